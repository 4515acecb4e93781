"""Interfaces the engine consumes: response agent, pipeline gateway, observer."""

from abc import ABC, abstractmethod

from agentic_build_loop.loop_state import BuildResult, ExtractionMode, LoopOutcome, Phase


class ResponseAgent(ABC):
    """Drives the AI chat surface."""

    @abstractmethod
    def wait_for_stability(self, timeout: float) -> bool:
        """
        Block until the response has settled.

        Returns:
            True once no new activity has been seen for the quiescence
            window and nothing indicates a response in progress.
            False if *timeout* seconds elapse first.
        """
        pass

    @abstractmethod
    def materialize_output(self, mode: ExtractionMode) -> bool:
        """Write the AI output to the build input file using *mode*."""
        pass

    @abstractmethod
    def fill_prompt(self, text: str) -> bool:
        pass

    @abstractmethod
    def attach_file(self, name: str) -> bool:
        pass

    @abstractmethod
    def submit(self) -> bool:
        pass

    def discard_draft(self) -> None:
        """Drop any prompt text and attachments not yet submitted."""
        pass


class PipelineGateway(ABC):
    """Triggers a remote build and reports its outcome."""

    @abstractmethod
    def trigger(self) -> None:
        """Start a build without waiting for it. Must not raise on launch failure."""
        pass

    @abstractmethod
    def poll_outcome(self, timeout: float) -> BuildResult:
        """Block until the build signals completion or *timeout* elapses."""
        pass

    def clear_completion_signal(self) -> None:
        """Forget any completion signal left by a previous build."""
        pass


class LoopObserver:
    """
    Passive sink for loop events.

    Subclasses override what they need. Implementations must return
    quickly and must not block the loop.
    """

    def on_phase_change(self, iteration: int, phase: Phase) -> None:
        pass

    def on_log_line(self, message: str, is_error: bool = False) -> None:
        pass

    def on_loop_finished(self, outcome: LoopOutcome) -> None:
        pass
