"""Tests for the script-driven pipeline gateway."""

import shlex
import sys
import textwrap
import threading

import pytest

from agentic_build_loop.loop_state import BuildResult
from agentic_build_loop.script_gateway import ScriptPipelineGateway
from agentic_build_loop.storage import StateLayout


SUCCESS_SCRIPT = """
import os, pathlib
pathlib.Path(os.environ["BUILDLOOP_COMPLETION_FLAG"]).touch()
"""

FAILURE_SCRIPT = """
import os, pathlib
logs = pathlib.Path(os.environ["BUILDLOOP_ERROR_LOGS_DIR"])
logs.mkdir(parents=True, exist_ok=True)
(logs / "error_summary.txt").write_text("e: Unresolved reference: foo")
(logs / "error_files.txt").write_text("app/Main.kt")
pathlib.Path(os.environ["BUILDLOOP_COMPLETION_FLAG"]).touch()
"""


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def layout(tmp_path):
    layout = StateLayout(tmp_path / "loop")
    layout.ensure_dirs()
    return layout


def command_for(tmp_path, source: str) -> str:
    script = tmp_path / "build_runner.py"
    script.write_text(textwrap.dedent(source))
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


def gateway_for(layout, command) -> ScriptPipelineGateway:
    return ScriptPipelineGateway(layout, command, poll_interval=0.05)


class TestTrigger:
    def test_clears_previous_signals_but_keeps_fingerprint(self, layout, tmp_path):
        """Old flag and logs are removed; the fingerprint record survives."""
        layout.completion_flag.touch()
        layout.summary_report.write_text("old")
        layout.files_report.write_text("old")
        layout.fingerprint_file.write_text('{"lastModifiedMs": 1, "contentHash": "x", "buildIteration": 0}')

        gateway = gateway_for(layout, command_for(tmp_path, "pass"))
        gateway.trigger()
        gateway.last_process.wait(timeout=30)

        assert not layout.completion_flag.exists()
        assert not layout.summary_report.exists()
        assert not layout.files_report.exists()
        assert layout.fingerprint_file.exists()

    def test_launch_failure_is_not_raised(self, layout, tmp_path):
        """A command that cannot start is logged; polling then times out."""
        gateway = gateway_for(layout, str(tmp_path / "no-such-runner"))

        gateway.trigger()

        assert gateway.last_process is None
        assert gateway.poll_outcome(timeout=0.2) == BuildResult.TIMEOUT


class TestPollOutcome:
    def test_success(self, layout, tmp_path):
        gateway = gateway_for(layout, command_for(tmp_path, SUCCESS_SCRIPT))
        gateway.trigger()
        assert gateway.poll_outcome(timeout=30) == BuildResult.SUCCESS

    def test_failure_when_summary_present(self, layout, tmp_path):
        gateway = gateway_for(layout, command_for(tmp_path, FAILURE_SCRIPT))
        gateway.trigger()

        assert gateway.poll_outcome(timeout=30) == BuildResult.FAILURE
        assert layout.summary_report.read_text() == "e: Unresolved reference: foo"

    def test_timeout_without_flag(self, layout):
        gateway = gateway_for(layout, "unused")
        assert gateway.poll_outcome(timeout=0.2) == BuildResult.TIMEOUT

    def test_clear_completion_signal(self, layout):
        layout.completion_flag.touch()
        gateway_for(layout, "unused").clear_completion_signal()
        assert not layout.completion_flag.exists()

    def test_timeout_log_reports_elapsed(self, layout, caplog):
        clock = FakeClock()
        gateway = ScriptPipelineGateway(layout, "unused", poll_interval=1.0, clock=clock, sleep=clock.sleep)

        assert gateway.poll_outcome(timeout=3) == BuildResult.TIMEOUT
        assert "did not complete after 3.0s (timeout 3s)" in caplog.text

    def test_cancelled_wait_log_reports_elapsed(self, layout, caplog):
        """A wait ended by its own stop event says so instead of claiming the full timeout."""
        stop = threading.Event()
        stop.set()
        gateway = ScriptPipelineGateway(layout, "unused", stop_event=stop)

        assert gateway.poll_outcome(timeout=30) == BuildResult.TIMEOUT
        assert "cancelled after 0.0s" in caplog.text
        assert "timeout 30s" not in caplog.text
