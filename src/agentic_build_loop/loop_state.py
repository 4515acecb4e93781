"""Data model for the build loop: phases, checkpoint record, fingerprints."""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Phase(str, Enum):
    """A named state of the orchestration loop."""

    IDLE = "IDLE"
    WAITING_FOR_RESPONSE = "WAITING_FOR_RESPONSE"
    EXTRACTING_OUTPUT = "EXTRACTING_OUTPUT"
    TRIGGERING_BUILD = "TRIGGERING_BUILD"
    WAITING_FOR_BUILD = "WAITING_FOR_BUILD"
    BUILD_SUCCEEDED = "BUILD_SUCCEEDED"
    CHECKING_FRESHNESS = "CHECKING_FRESHNESS"
    READING_ERROR_LOGS = "READING_ERROR_LOGS"
    ATTACHING_FILES = "ATTACHING_FILES"
    SUBMITTING_PROMPT = "SUBMITTING_PROMPT"
    TIMEOUT_RECOVERY = "TIMEOUT_RECOVERY"

    @property
    def description(self) -> str:
        return PHASE_DESCRIPTIONS[self]


PHASE_DESCRIPTIONS = {
    Phase.IDLE: "Idle",
    Phase.WAITING_FOR_RESPONSE: "Waiting for AI response...",
    Phase.EXTRACTING_OUTPUT: "Extracting AI output...",
    Phase.TRIGGERING_BUILD: "Triggering build...",
    Phase.WAITING_FOR_BUILD: "Waiting for build pipeline...",
    Phase.BUILD_SUCCEEDED: "Build succeeded",
    Phase.CHECKING_FRESHNESS: "Checking whether errors are new...",
    Phase.READING_ERROR_LOGS: "Reading error logs...",
    Phase.ATTACHING_FILES: "Attaching error files...",
    Phase.SUBMITTING_PROMPT: "Submitting prompt...",
    Phase.TIMEOUT_RECOVERY: "Recovering from timeout...",
}


class BuildResult(str, Enum):
    """Outcome reported by the pipeline gateway."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    TIMEOUT = "TIMEOUT"


class ExtractionMode(str, Enum):
    """How the AI response is turned into the build input file."""

    INLINE_BLOCK = "INLINE_BLOCK"
    DOWNLOADED_FILE = "DOWNLOADED_FILE"
    PLAIN_TEXT = "PLAIN_TEXT"


class LoopStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    EXHAUSTED = "EXHAUSTED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


@dataclass
class LoopState:
    """Durable (phase, iteration) checkpoint."""

    phase: Phase
    iteration: int = 0
    updated_at_ms: int = field(default_factory=now_ms)

    def to_json(self) -> str:
        return json.dumps(
            {
                "phase": self.phase.value,
                "iteration": self.iteration,
                "updatedAtMs": self.updated_at_ms,
            }
        )

    @classmethod
    def from_json(cls, text: str) -> Optional["LoopState"]:
        """
        Parse a checkpoint record.

        Returns:
            LoopState, or None if the record is malformed in any way.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None

        try:
            phase = Phase(data["phase"])
        except (KeyError, ValueError, TypeError):
            return None

        iteration = data.get("iteration")
        if isinstance(iteration, bool) or not isinstance(iteration, int) or iteration < 0:
            return None

        updated_at = data.get("updatedAtMs", 0)
        if isinstance(updated_at, bool) or not isinstance(updated_at, int):
            return None

        return cls(phase=phase, iteration=iteration, updated_at_ms=updated_at)


@dataclass
class ErrorFingerprint:
    """
    Identity of a failure report.

    Two fingerprints describe the same failure when both the report's
    modification time and its content hash match. The iteration is only
    a record of when the failure was seen.
    """

    observed_at_ms: int
    content_hash: str
    iteration: int = 0

    def same_failure(self, other: Optional["ErrorFingerprint"]) -> bool:
        if other is None:
            return False
        return (
            self.observed_at_ms == other.observed_at_ms
            and self.content_hash == other.content_hash
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "lastModifiedMs": self.observed_at_ms,
                "contentHash": self.content_hash,
                "buildIteration": self.iteration,
            }
        )

    @classmethod
    def from_json(cls, text: str) -> Optional["ErrorFingerprint"]:
        try:
            data = json.loads(text)
            return cls(
                observed_at_ms=int(data["lastModifiedMs"]),
                content_hash=str(data["contentHash"]),
                iteration=int(data.get("buildIteration", 0)),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None


@dataclass
class ErrorBundle:
    """The two failure artifacts of a failed build."""

    files_report: str
    summary_report: str
    summary_modified_ms: int = 0
    raw_summary: bytes = field(default=b"", repr=False)
    captured_at_ms: int = field(default_factory=now_ms)


@dataclass
class LoopOutcome:
    """How a run of the loop ended."""

    status: LoopStatus
    phase: Phase
    iteration: int
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == LoopStatus.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "phase": self.phase.value,
            "iteration": self.iteration,
            "reason": self.reason,
        }
