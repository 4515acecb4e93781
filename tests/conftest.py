"""Shared fakes for build loop tests (no subprocesses, no network)."""

import os
from dataclasses import dataclass
from typing import Callable, Optional

import pytest

from agentic_build_loop.checkpoint import CheckpointStore
from agentic_build_loop.collaborators import LoopObserver, PipelineGateway, ResponseAgent
from agentic_build_loop.config import LoopConfig
from agentic_build_loop.engine import OrchestrationEngine
from agentic_build_loop.fingerprint import FingerprintStore
from agentic_build_loop.loop_state import BuildResult, ExtractionMode
from agentic_build_loop.storage import StateLayout


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

@dataclass
class FailureReport:
    """A failed build that leaves the given artifacts behind."""
    summary: str
    files: str = "app/src/main/Main.kt"
    mtime_s: int = 1_700_000_000


class ScriptedAgent(ResponseAgent):
    """Response agent that answers from scripted results and records every call."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.stability_results: list = []
        self.materialize_results: list = []
        self.attach_results: list = []
        self.on_attach: Optional[Callable[[str], None]] = None
        # Positions in calls at which the draft was discarded
        self.discards: list[int] = []

    @staticmethod
    def _next(results: list, default=True):
        if not results:
            return default
        value = results.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    def wait_for_stability(self, timeout: float) -> bool:
        self.calls.append(("wait_for_stability", timeout))
        return self._next(self.stability_results)

    def materialize_output(self, mode: ExtractionMode) -> bool:
        self.calls.append(("materialize_output", mode))
        return self._next(self.materialize_results)

    def fill_prompt(self, text: str) -> bool:
        self.calls.append(("fill_prompt", text))
        return True

    def attach_file(self, name: str) -> bool:
        self.calls.append(("attach_file", name))
        if self.on_attach is not None:
            self.on_attach(name)
        return self._next(self.attach_results)

    def submit(self) -> bool:
        self.calls.append(("submit",))
        return True

    def discard_draft(self) -> None:
        self.discards.append(len(self.calls))

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


class ScriptedGateway(PipelineGateway):
    """
    Pipeline gateway that replays scripted outcomes.

    Each outcome is a BuildResult or a FailureReport; a FailureReport writes
    the failure artifacts with a fixed modification time and reports FAILURE.
    When the script runs out, every poll times out.
    """

    def __init__(self, layout: StateLayout, outcomes: Optional[list] = None):
        self.layout = layout
        self.outcomes = list(outcomes or [])
        self.triggers = 0
        self.polls = 0

    def trigger(self) -> None:
        self.triggers += 1
        self.layout.clear_completion_flag()
        self.layout.clear_failure_artifacts()

    def poll_outcome(self, timeout: float) -> BuildResult:
        self.polls += 1
        if not self.outcomes:
            return BuildResult.TIMEOUT
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, FailureReport):
            write_failure(self.layout, outcome)
            return BuildResult.FAILURE
        return outcome

    def clear_completion_signal(self) -> None:
        self.layout.clear_completion_flag()


class RecordingObserver(LoopObserver):
    def __init__(self):
        self.phases: list[tuple] = []
        self.logs: list[tuple] = []
        self.outcomes: list = []

    def on_phase_change(self, iteration, phase):
        self.phases.append((iteration, phase))

    def on_log_line(self, message, is_error=False):
        self.logs.append((message, is_error))

    def on_loop_finished(self, outcome):
        self.outcomes.append(outcome)


def write_failure(layout: StateLayout, report: FailureReport) -> None:
    layout.error_logs_dir.mkdir(parents=True, exist_ok=True)
    layout.summary_report.write_text(report.summary)
    layout.files_report.write_text(report.files)
    for path in (layout.summary_report, layout.files_report):
        os.utime(path, (report.mtime_s, report.mtime_s))
    layout.completion_flag.touch()


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def layout(tmp_path) -> StateLayout:
    layout = StateLayout(tmp_path / "loop")
    layout.ensure_dirs()
    return layout


@pytest.fixture
def loop_config(layout) -> LoopConfig:
    return LoopConfig(
        base_dir=layout.base_dir,
        step_delay_seconds=0,
        response_timeout_seconds=1,
        build_timeout_seconds=1,
    )


@pytest.fixture
def agent() -> ScriptedAgent:
    return ScriptedAgent()


@pytest.fixture
def gateway(layout) -> ScriptedGateway:
    return ScriptedGateway(layout)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def make_engine(layout, loop_config, agent, gateway, observer, sleeps):
    """Factory for engines sharing the test's layout and fakes."""

    def _make(**overrides) -> OrchestrationEngine:
        config = overrides.pop("config", loop_config)
        return OrchestrationEngine(
            agent=overrides.pop("agent", agent),
            gateway=overrides.pop("gateway", gateway),
            checkpoints=CheckpointStore(layout.checkpoint_file),
            fingerprints=FingerprintStore(layout.fingerprint_file, layout.summary_report),
            layout=layout,
            config=config,
            observer=overrides.pop("observer", observer),
            sleep=overrides.pop("sleep", sleeps.append),
        )

    return _make
