"""Per-phase retry counters and timeout-recovery backoff."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Hashable, Optional

from agentic_build_loop.constants import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_CAP_EXPONENT,
    MAX_RECOVERIES,
    MAX_RETRIES_PER_STATE,
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``base * 2^min(attempt, cap_exponent)``."""

    base_seconds: float = BACKOFF_BASE_SECONDS
    cap_exponent: int = BACKOFF_CAP_EXPONENT

    def delay_for(self, attempt: int) -> float:
        exponent = min(max(attempt, 0), self.cap_exponent)
        return self.base_seconds * (2 ** exponent)

    @property
    def max_delay(self) -> float:
        return self.delay_for(self.cap_exponent)


@dataclass
class RetryBudget:
    """
    Retry bookkeeping for one engine instance.

    Each fallible phase has its own counter. A phase may re-enter itself
    up to ``max_retries_per_phase`` times; the next failure escalates.
    Timeout recovery has a separate counter bounded by ``max_recoveries``.
    Nothing here is persisted.
    """

    max_retries_per_phase: int = MAX_RETRIES_PER_STATE
    max_recoveries: int = MAX_RECOVERIES
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    _failures: Counter = field(default_factory=Counter, init=False, repr=False)
    _recoveries: int = field(default=0, init=False)

    def record_failure(self, phase: Hashable) -> bool:
        """
        Count a failed action.

        Returns:
            True if the phase should be retried, False if it should escalate.
            Escalating resets the phase's counter.
        """
        self._failures[phase] += 1
        if self._failures[phase] <= self.max_retries_per_phase:
            return True
        del self._failures[phase]
        return False

    def failures(self, phase: Hashable) -> int:
        return self._failures[phase]

    def clear(self, phase: Hashable) -> None:
        self._failures.pop(phase, None)

    @property
    def recoveries(self) -> int:
        return self._recoveries

    def next_recovery_delay(self) -> Optional[float]:
        """
        Enter timeout recovery once more.

        Returns:
            Seconds to back off before resuming, or None when the recovery
            ceiling has been exceeded and the loop must abort.
        """
        attempt = self._recoveries
        self._recoveries += 1
        if self._recoveries > self.max_recoveries:
            return None
        return self.backoff.delay_for(attempt)

    def reset_recoveries(self) -> None:
        self._recoveries = 0

    def reset(self) -> None:
        self._failures.clear()
        self._recoveries = 0
