"""Pure transition logic for the build loop.

No I/O happens here. The engine executes a phase's action, reduces the
outcome to an ActionResult, and asks this module where to go next.
"""

from enum import Enum
from typing import Optional

from agentic_build_loop.loop_state import Phase


class ActionResult(str, Enum):
    """Outcome of executing one phase's action."""

    OK = "OK"
    RETRY = "RETRY"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    BUILD_SUCCEEDED = "BUILD_SUCCEEDED"
    BUILD_FAILED = "BUILD_FAILED"
    FRESH = "FRESH"
    STALE = "STALE"
    MISSING = "MISSING"
    EXHAUSTED = "EXHAUSTED"


class InvalidTransitionError(Exception):
    """Raised when a phase reports a result it has no transition for."""
    pass


# (phase, result) -> next phase. None means the loop exits.
TRANSITIONS: dict[tuple[Phase, ActionResult], Optional[Phase]] = {
    (Phase.IDLE, ActionResult.OK): Phase.WAITING_FOR_RESPONSE,

    (Phase.WAITING_FOR_RESPONSE, ActionResult.OK): Phase.EXTRACTING_OUTPUT,
    (Phase.WAITING_FOR_RESPONSE, ActionResult.TIMED_OUT): Phase.TIMEOUT_RECOVERY,

    (Phase.EXTRACTING_OUTPUT, ActionResult.OK): Phase.TRIGGERING_BUILD,
    (Phase.EXTRACTING_OUTPUT, ActionResult.RETRY): Phase.EXTRACTING_OUTPUT,
    (Phase.EXTRACTING_OUTPUT, ActionResult.FAILED): Phase.TIMEOUT_RECOVERY,

    (Phase.TRIGGERING_BUILD, ActionResult.OK): Phase.WAITING_FOR_BUILD,

    (Phase.WAITING_FOR_BUILD, ActionResult.BUILD_SUCCEEDED): Phase.BUILD_SUCCEEDED,
    (Phase.WAITING_FOR_BUILD, ActionResult.BUILD_FAILED): Phase.CHECKING_FRESHNESS,
    (Phase.WAITING_FOR_BUILD, ActionResult.TIMED_OUT): Phase.TIMEOUT_RECOVERY,

    (Phase.CHECKING_FRESHNESS, ActionResult.FRESH): Phase.READING_ERROR_LOGS,
    (Phase.CHECKING_FRESHNESS, ActionResult.STALE): Phase.SUBMITTING_PROMPT,

    (Phase.READING_ERROR_LOGS, ActionResult.OK): Phase.ATTACHING_FILES,
    (Phase.READING_ERROR_LOGS, ActionResult.MISSING): Phase.TIMEOUT_RECOVERY,

    (Phase.ATTACHING_FILES, ActionResult.OK): Phase.SUBMITTING_PROMPT,
    (Phase.ATTACHING_FILES, ActionResult.RETRY): Phase.ATTACHING_FILES,
    (Phase.ATTACHING_FILES, ActionResult.FAILED): Phase.TIMEOUT_RECOVERY,

    (Phase.SUBMITTING_PROMPT, ActionResult.OK): Phase.WAITING_FOR_RESPONSE,

    (Phase.BUILD_SUCCEEDED, ActionResult.OK): None,

    (Phase.TIMEOUT_RECOVERY, ActionResult.OK): Phase.WAITING_FOR_RESPONSE,
    (Phase.TIMEOUT_RECOVERY, ActionResult.EXHAUSTED): None,
}

# Transitions that start a new AI turn
ITERATION_ADVANCES = frozenset({
    (Phase.CHECKING_FRESHNESS, ActionResult.STALE),
    (Phase.ATTACHING_FILES, ActionResult.OK),
})

# Applied to a loaded checkpoint before the loop starts.
#   IDLE only forwards, so it collapses into its successor.
#   ATTACHING_FILES held the error bundle in memory and may have attached
#   part of it; the logs are re-read from disk.
#   TIMEOUT_RECOVERY counters are not durable; a restart counts as the
#   recovery itself.
# Every phase not listed resumes as itself.
RESUME_PHASE_MAP: dict[Phase, Phase] = {
    Phase.IDLE: Phase.WAITING_FOR_RESPONSE,
    Phase.ATTACHING_FILES: Phase.READING_ERROR_LOGS,
    Phase.TIMEOUT_RECOVERY: Phase.WAITING_FOR_RESPONSE,
}

INITIAL_PHASE = Phase.WAITING_FOR_RESPONSE


def next_phase(phase: Phase, result: ActionResult) -> Optional[Phase]:
    """
    Compute the phase that follows *phase* given its action's *result*.

    Returns:
        The next phase, or None if the loop should exit.

    Raises:
        InvalidTransitionError: If the pair has no defined transition.
    """
    try:
        return TRANSITIONS[(phase, result)]
    except KeyError:
        raise InvalidTransitionError(
            f"No transition from {phase.value} on {result.value}"
        ) from None


def advances_iteration(phase: Phase, result: ActionResult) -> bool:
    return (phase, result) in ITERATION_ADVANCES


def normalize_resume_phase(phase: Phase) -> Phase:
    """Map a checkpointed phase to the phase the loop should resume in."""
    return RESUME_PHASE_MAP.get(phase, phase)


def is_terminal(phase: Phase, result: ActionResult) -> bool:
    return next_phase(phase, result) is None
