"""Tests for the buildloop CLI (click CliRunner, fake collaborators)."""

import os

import pytest
from click.testing import CliRunner

from conftest import ScriptedAgent, ScriptedGateway
from agentic_build_loop import loop_runner
from agentic_build_loop.cli import cli
from agentic_build_loop.loop_state import BuildResult, ErrorFingerprint, LoopState, Phase
from agentic_build_loop.storage import StateLayout


@pytest.fixture
def base_dir(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith("BUILDLOOP_"):
            monkeypatch.delenv(key, raising=False)
    base = tmp_path / "loop"
    monkeypatch.setenv("BUILDLOOP_BASE_DIR", str(base))
    monkeypatch.setenv("BUILDLOOP_STEP_DELAY_SECONDS", "0")
    return base


@pytest.fixture
def runner():
    return CliRunner()


class TestInit:
    def test_creates_directories(self, runner, base_dir):
        result = runner.invoke(cli, ["init"])

        assert result.exit_code == 0
        assert "Build loop initialized" in result.output
        assert (base_dir / "build_error_logs").is_dir()
        assert (base_dir / "mailbox" / "inbox").is_dir()


class TestCheckConfig:
    def test_missing_build_command(self, runner, base_dir):
        result = runner.invoke(cli, ["check-config"])

        assert result.exit_code == 1
        assert "BUILDLOOP_BUILD_COMMAND" in result.output

    def test_valid(self, runner, base_dir, monkeypatch):
        monkeypatch.setenv("BUILDLOOP_BUILD_COMMAND", "./build_runner.sh")

        result = runner.invoke(cli, ["check-config"])

        assert result.exit_code == 0
        assert "./build_runner.sh" in result.output


class TestStatus:
    def test_empty(self, runner, base_dir):
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "None (next run starts fresh)" in result.output
        assert "UNKNOWN" in result.output

    def test_shows_checkpoint(self, runner, base_dir):
        layout = StateLayout(base_dir)
        layout.ensure_dirs()
        layout.checkpoint_file.write_text(LoopState(Phase.WAITING_FOR_BUILD, 3).to_json())

        result = runner.invoke(cli, ["status"])

        assert "WAITING_FOR_BUILD" in result.output
        assert "IN PROGRESS" in result.output


class TestReset:
    def _seed(self, base_dir) -> StateLayout:
        layout = StateLayout(base_dir)
        layout.ensure_dirs()
        layout.checkpoint_file.write_text(LoopState(Phase.WAITING_FOR_BUILD, 3).to_json())
        layout.fingerprint_file.write_text(ErrorFingerprint(1, "abc", 2).to_json())
        return layout

    def test_keeps_fingerprint(self, runner, base_dir):
        layout = self._seed(base_dir)

        result = runner.invoke(cli, ["reset", "--yes"])

        assert result.exit_code == 0
        assert not layout.checkpoint_file.exists()
        assert layout.fingerprint_file.exists()

    def test_with_fingerprint(self, runner, base_dir):
        layout = self._seed(base_dir)

        result = runner.invoke(cli, ["reset", "--yes", "--fingerprint"])

        assert result.exit_code == 0
        assert not layout.fingerprint_file.exists()

    def test_requires_confirmation(self, runner, base_dir):
        layout = self._seed(base_dir)

        result = runner.invoke(cli, ["reset"], input="n\n")

        assert result.exit_code != 0
        assert layout.checkpoint_file.exists()


class TestRun:
    def test_config_error(self, runner, base_dir):
        result = runner.invoke(cli, ["run", "--no-trace"])
        assert result.exit_code == 1

    def _patch_engine(self, monkeypatch, outcomes):
        real_build_engine = loop_runner.build_engine

        def fake_build_engine(config, observer=None, **kwargs):
            layout = StateLayout(config.base_dir)
            layout.ensure_dirs()
            return real_build_engine(
                config,
                agent=ScriptedAgent(),
                gateway=ScriptedGateway(layout, outcomes),
                observer=observer,
                sleep=lambda seconds: None,
            )

        monkeypatch.setattr(loop_runner, "build_engine", fake_build_engine)

    def test_success_exit_code(self, runner, base_dir, monkeypatch):
        monkeypatch.setenv("BUILDLOOP_BUILD_COMMAND", "unused")
        self._patch_engine(monkeypatch, [BuildResult.SUCCESS])

        result = runner.invoke(cli, ["run", "--no-trace"])

        assert result.exit_code == 0, result.output
        assert "Status:    SUCCEEDED" in result.output
        assert "[iter  0]" in result.output

    def test_exhausted_exit_code(self, runner, base_dir, monkeypatch):
        monkeypatch.setenv("BUILDLOOP_BUILD_COMMAND", "unused")
        monkeypatch.setenv("BUILDLOOP_MAX_ITERATIONS", "2")
        self._patch_engine(monkeypatch, [])

        result = runner.invoke(cli, ["run", "--no-trace", "--quiet"])

        assert result.exit_code == 1
        assert "EXHAUSTED" in result.output

    def test_mode_override(self, runner, base_dir, monkeypatch):
        monkeypatch.setenv("BUILDLOOP_BUILD_COMMAND", "unused")
        self._patch_engine(monkeypatch, [BuildResult.SUCCESS])

        result = runner.invoke(cli, ["run", "--no-trace", "--quiet", "--mode", "plain_text"])

        assert result.exit_code == 0
        reports = list((base_dir / "reports").glob("run_*.json"))
        assert '"extraction_mode": "PLAIN_TEXT"' in reports[0].read_text()
