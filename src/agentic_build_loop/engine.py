"""Orchestration engine: runs the build loop one phase at a time.

The engine owns all mutable loop data (phase, iteration, retry counters,
the current error bundle). Each step persists a checkpoint, executes the
current phase's action, reduces its outcome to an ActionResult and lets
transitions.next_phase decide where to go.
"""

import logging
import threading
from typing import Callable, Optional

from agentic_build_loop.checkpoint import CheckpointStore
from agentic_build_loop.collaborators import LoopObserver, PipelineGateway, ResponseAgent
from agentic_build_loop.config import LoopConfig
from agentic_build_loop.constants import FRESH_ERROR_PROMPT, STALE_ERROR_PROMPT
from agentic_build_loop.fingerprint import FingerprintStore, fingerprint_bytes
from agentic_build_loop.loop_state import (
    BuildResult,
    ErrorBundle,
    LoopOutcome,
    LoopState,
    LoopStatus,
    Phase,
)
from agentic_build_loop.retry_policy import BackoffPolicy, RetryBudget
from agentic_build_loop.storage import StateLayout
from agentic_build_loop.transitions import (
    INITIAL_PHASE,
    ActionResult,
    advances_iteration,
    next_phase,
    normalize_resume_phase,
)

logger = logging.getLogger(__name__)


class OrchestrationEngine:
    """Resumable state machine driving one AI → build → feedback pipeline."""

    def __init__(
        self,
        agent: ResponseAgent,
        gateway: PipelineGateway,
        checkpoints: CheckpointStore,
        fingerprints: FingerprintStore,
        layout: StateLayout,
        config: Optional[LoopConfig] = None,
        observer: Optional[LoopObserver] = None,
        sleep: Optional[Callable[[float], object]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.agent = agent
        self.gateway = gateway
        self.checkpoints = checkpoints
        self.fingerprints = fingerprints
        self.layout = layout
        self.config = config or LoopConfig()
        self.observer = observer or LoopObserver()

        self._stop = stop_event or threading.Event()
        # Default sleep wakes early when a stop is requested
        self._sleep = sleep or self._stop.wait

        self.budget = RetryBudget(
            max_retries_per_phase=self.config.max_retries_per_state,
            max_recoveries=self.config.max_recoveries,
            backoff=BackoffPolicy(
                base_seconds=self.config.backoff_base_seconds,
                cap_exponent=self.config.backoff_cap_exponent,
            ),
        )

        self.phase: Phase = INITIAL_PHASE
        self.iteration = 0
        self.rounds = 0
        self.outcome: Optional[LoopOutcome] = None
        self._bundle: Optional[ErrorBundle] = None
        self._escalated_from: Optional[Phase] = None

    # =========================================================================
    # Control
    # =========================================================================

    def request_stop(self) -> None:
        """Ask the loop to exit at the next phase boundary."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def reset(self, clear_fingerprint: bool = False) -> None:
        """
        Explicit clean start.

        Clears the checkpoint and the completion signal. The fingerprint
        survives unless *clear_fingerprint* is set.
        """
        self.checkpoints.clear()
        self.gateway.clear_completion_signal()
        if clear_fingerprint:
            self.fingerprints.clear()
        self.phase = INITIAL_PHASE
        self.iteration = 0
        self.rounds = 0
        self.outcome = None
        self._bundle = None
        self.budget.reset()
        self._log("Loop state reset" + (" (including fingerprint)" if clear_fingerprint else ""))

    def begin(self) -> None:
        """Load the checkpoint and prepare to step."""
        self._stop.clear()
        self.budget.reset()
        self.rounds = 0
        self.outcome = None
        self._bundle = None
        self._escalated_from = None

        saved = self.checkpoints.load()
        if saved is None:
            self.phase = INITIAL_PHASE
            self.iteration = 0
            self._log(f"Loop started: phase={self.phase.value} iteration=0 mode={self.config.extraction_mode.value}")
        else:
            self.phase = normalize_resume_phase(saved.phase)
            self.iteration = saved.iteration
            if self.phase != saved.phase:
                self._log(f"Resuming {saved.phase.value} as {self.phase.value}")
            self._log(
                f"Loop resumed: phase={self.phase.value} iteration={self.iteration} "
                f"mode={self.config.extraction_mode.value}"
            )

        self._notify_phase()

    def run(self) -> LoopOutcome:
        """Run until success, exhaustion, or cancellation."""
        self.begin()
        while True:
            outcome = self.step()
            if outcome is not None:
                return outcome

    def step(self) -> Optional[LoopOutcome]:
        """
        Execute one phase.

        Returns:
            The loop outcome once the loop has ended, otherwise None.
        """
        if self.outcome is not None:
            return self.outcome

        if self._stop.is_set():
            self.checkpoints.save(LoopState(self.phase, self.iteration))
            self._log("Loop stopped by user request")
            return self._finish(LoopStatus.CANCELLED, self.phase, "Stopped by user")

        max_iterations = self.config.max_iterations
        if self.iteration >= max_iterations or self.rounds >= max_iterations:
            self._log(f"Max iterations ({max_iterations}) reached, stopping", is_error=True)
            return self._finish(LoopStatus.EXHAUSTED, self.phase, "Max iterations reached")

        phase = self.phase
        self.checkpoints.save(LoopState(phase, self.iteration))

        result = self._execute(phase)

        if self._stop.is_set() and result == ActionResult.TIMED_OUT:
            # A wait that ended under a stop request is resumed, not escalated
            self._log("Loop stopped by user request")
            return self._finish(LoopStatus.CANCELLED, phase, "Stopped by user")

        following = next_phase(phase, result)
        if advances_iteration(phase, result):
            self.iteration += 1

        if following is None:
            if phase == Phase.BUILD_SUCCEEDED:
                return self._finish(LoopStatus.SUCCEEDED, phase, "Build succeeded")
            stopped_at = self._escalated_from or phase
            return self._finish(
                LoopStatus.EXHAUSTED,
                stopped_at,
                f"Too many retries, stopped at {stopped_at.value}",
            )

        if following == Phase.TIMEOUT_RECOVERY and phase != Phase.TIMEOUT_RECOVERY:
            self._escalated_from = phase
            self._log(f"Timeout in {phase.value}", is_error=True)
        if following == Phase.WAITING_FOR_RESPONSE:
            self.rounds += 1

        self.phase = following
        self._notify_phase()

        if self.config.step_delay_seconds > 0:
            self._sleep(self.config.step_delay_seconds)
        return None

    # =========================================================================
    # Phase actions
    # =========================================================================

    def _execute(self, phase: Phase) -> ActionResult:
        handlers = {
            Phase.IDLE: self._do_idle,
            Phase.WAITING_FOR_RESPONSE: self._do_wait_for_response,
            Phase.EXTRACTING_OUTPUT: self._do_extract_output,
            Phase.TRIGGERING_BUILD: self._do_trigger_build,
            Phase.WAITING_FOR_BUILD: self._do_wait_for_build,
            Phase.BUILD_SUCCEEDED: self._do_build_succeeded,
            Phase.CHECKING_FRESHNESS: self._do_check_freshness,
            Phase.READING_ERROR_LOGS: self._do_read_error_logs,
            Phase.ATTACHING_FILES: self._do_attach_files,
            Phase.SUBMITTING_PROMPT: self._do_submit_prompt,
            Phase.TIMEOUT_RECOVERY: self._do_timeout_recovery,
        }
        return handlers[phase]()

    def _do_idle(self) -> ActionResult:
        return ActionResult.OK

    def _do_wait_for_response(self) -> ActionResult:
        done = self._call(
            "wait_for_stability", self.agent.wait_for_stability,
            self.config.response_timeout_seconds,
        )
        return ActionResult.OK if done else ActionResult.TIMED_OUT

    def _do_extract_output(self) -> ActionResult:
        mode = self.config.extraction_mode
        if self._call("materialize_output", self.agent.materialize_output, mode):
            self.budget.clear(Phase.EXTRACTING_OUTPUT)
            self._log(f"Extraction OK (mode={mode.value}), {self.layout.output_file.name} ready")
            return ActionResult.OK
        return self._retry_or_fail(Phase.EXTRACTING_OUTPUT)

    def _do_trigger_build(self) -> ActionResult:
        self._log(f"Triggering build (iteration={self.iteration})")
        self._call("trigger", self.gateway.trigger)
        self.budget.reset_recoveries()
        return ActionResult.OK

    def _do_wait_for_build(self) -> ActionResult:
        self._log("Polling for build completion")
        outcome = self._call(
            "poll_outcome", self.gateway.poll_outcome,
            self.config.build_timeout_seconds, default=BuildResult.TIMEOUT,
        )
        if outcome == BuildResult.SUCCESS:
            return ActionResult.BUILD_SUCCEEDED
        if outcome == BuildResult.FAILURE:
            return ActionResult.BUILD_FAILED
        return ActionResult.TIMED_OUT

    def _do_build_succeeded(self) -> ActionResult:
        self._log(f"Build succeeded after {self.iteration} iteration(s)")
        return ActionResult.OK

    def _do_check_freshness(self) -> ActionResult:
        if self.fingerprints.is_new_failure():
            self._log("New error logs detected, reading logs")
            return ActionResult.FRESH

        self._log("Error logs unchanged, sending nudge prompt")
        self._call("discard_draft", self.agent.discard_draft)
        if not self._call("fill_prompt", self.agent.fill_prompt, STALE_ERROR_PROMPT):
            self._log("Could not fill nudge prompt", is_error=True)
        return ActionResult.STALE

    def _do_read_error_logs(self) -> ActionResult:
        bundle = self.layout.read_error_bundle()
        if bundle is None:
            self._log("Error logs missing after failure, recovering", is_error=True)
            return ActionResult.MISSING

        # Record what was read before another build can replace the artifacts
        self.fingerprints.save(
            fingerprint_bytes(bundle.raw_summary, bundle.summary_modified_ms, self.iteration)
        )
        self._bundle = bundle
        self._log(f"Error logs read ({len(bundle.summary_report)} chars)")
        return ActionResult.OK

    def _do_attach_files(self) -> ActionResult:
        if self._attach_error_files():
            self.budget.clear(Phase.ATTACHING_FILES)
            self._bundle = None
            return ActionResult.OK
        result = self._retry_or_fail(Phase.ATTACHING_FILES)
        if result == ActionResult.FAILED:
            self._call("discard_draft", self.agent.discard_draft)
        return result

    def _attach_error_files(self) -> bool:
        self._call("discard_draft", self.agent.discard_draft)
        for name in (self.layout.files_report.name, self.layout.summary_report.name):
            if not self._call("attach_file", self.agent.attach_file, name):
                self._log(f"Attaching {name} failed", is_error=True)
                return False

        if not self._call("fill_prompt", self.agent.fill_prompt, FRESH_ERROR_PROMPT):
            self._log("Filling error prompt failed", is_error=True)
            return False

        self._log("Both error files attached, prompt filled")
        return True

    def _do_submit_prompt(self) -> ActionResult:
        if not self._call("submit", self.agent.submit):
            self._log("Submit did not confirm, waiting for response anyway", is_error=True)
        return ActionResult.OK

    def _do_timeout_recovery(self) -> ActionResult:
        delay = self.budget.next_recovery_delay()
        if delay is None:
            stopped_at = self._escalated_from or Phase.TIMEOUT_RECOVERY
            self._log(f"Too many retries, stopped at {stopped_at.value}", is_error=True)
            return ActionResult.EXHAUSTED

        self._log(
            f"Timeout recovery, waiting {delay:.1f}s (recovery {self.budget.recoveries})",
            is_error=True,
        )
        self._sleep(delay)
        return ActionResult.OK

    # =========================================================================
    # Helpers
    # =========================================================================

    def _retry_or_fail(self, phase: Phase) -> ActionResult:
        if self.budget.record_failure(phase):
            self._log(f"Retrying {phase.value} (attempt {self.budget.failures(phase)})")
            return ActionResult.RETRY
        self._log(f"Max retries exceeded for {phase.value}", is_error=True)
        return ActionResult.FAILED

    def _call(self, name: str, func: Callable, *args, default=False):
        """Invoke a collaborator, turning any exception into *default*."""
        try:
            return func(*args)
        except Exception as e:
            logger.exception("%s raised", name)
            self._emit_log(f"{name} failed: {e}", is_error=True)
            return default

    def _finish(self, status: LoopStatus, phase: Phase, reason: str) -> LoopOutcome:
        self.outcome = LoopOutcome(
            status=status,
            phase=phase,
            iteration=self.iteration,
            reason=reason,
        )
        try:
            self.observer.on_loop_finished(self.outcome)
        except Exception:
            logger.exception("Observer failed in on_loop_finished")
        return self.outcome

    def _notify_phase(self) -> None:
        try:
            self.observer.on_phase_change(self.iteration, self.phase)
        except Exception:
            logger.exception("Observer failed in on_phase_change")

    def _log(self, message: str, is_error: bool = False) -> None:
        if is_error:
            logger.error(message)
        else:
            logger.info(message)
        self._emit_log(message, is_error)

    def _emit_log(self, message: str, is_error: bool) -> None:
        try:
            self.observer.on_log_line(message, is_error)
        except Exception:
            logger.exception("Observer failed in on_log_line")
