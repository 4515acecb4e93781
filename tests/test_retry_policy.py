"""Tests for backoff and retry bookkeeping."""

import pytest

from agentic_build_loop.loop_state import Phase
from agentic_build_loop.retry_policy import BackoffPolicy, RetryBudget


class TestBackoffPolicy:
    def test_doubles_until_cap(self):
        policy = BackoffPolicy(base_seconds=1.0, cap_exponent=3)
        assert [policy.delay_for(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    @pytest.mark.parametrize("base,cap", [(0.5, 0), (1.0, 3), (2.0, 5)])
    def test_monotone_then_constant(self, base, cap):
        """Delays never decrease, and stop growing at the cap."""
        policy = BackoffPolicy(base_seconds=base, cap_exponent=cap)
        delays = [policy.delay_for(n) for n in range(cap + 5)]

        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert set(delays[cap:]) == {policy.max_delay}

    def test_negative_attempt_uses_base(self):
        assert BackoffPolicy(base_seconds=3.0).delay_for(-1) == 3.0


class TestRetryBudget:
    def test_allows_max_retries_then_escalates(self):
        budget = RetryBudget(max_retries_per_phase=3)
        results = [budget.record_failure(Phase.EXTRACTING_OUTPUT) for _ in range(4)]
        assert results == [True, True, True, False]

    def test_escalation_resets_counter(self):
        budget = RetryBudget(max_retries_per_phase=1)
        budget.record_failure(Phase.ATTACHING_FILES)
        budget.record_failure(Phase.ATTACHING_FILES)

        assert budget.failures(Phase.ATTACHING_FILES) == 0
        assert budget.record_failure(Phase.ATTACHING_FILES) is True

    def test_counters_are_per_phase(self):
        """Failures in one phase do not consume another phase's budget."""
        budget = RetryBudget(max_retries_per_phase=2)
        budget.record_failure(Phase.EXTRACTING_OUTPUT)
        budget.record_failure(Phase.EXTRACTING_OUTPUT)

        assert budget.record_failure(Phase.ATTACHING_FILES) is True
        assert budget.failures(Phase.ATTACHING_FILES) == 1

    def test_clear_on_success(self):
        budget = RetryBudget(max_retries_per_phase=2)
        budget.record_failure(Phase.EXTRACTING_OUTPUT)
        budget.clear(Phase.EXTRACTING_OUTPUT)
        assert budget.failures(Phase.EXTRACTING_OUTPUT) == 0

    def test_zero_retries_escalates_immediately(self):
        budget = RetryBudget(max_retries_per_phase=0)
        assert budget.record_failure(Phase.EXTRACTING_OUTPUT) is False


class TestRecoveryCeiling:
    def test_delays_then_abort(self):
        budget = RetryBudget(max_recoveries=3, backoff=BackoffPolicy(1.0, 3))
        delays = [budget.next_recovery_delay() for _ in range(4)]
        assert delays == [1.0, 2.0, 4.0, None]

    def test_reset_recoveries(self):
        """Progress (a new build) restores the full recovery budget."""
        budget = RetryBudget(max_recoveries=1)
        budget.next_recovery_delay()
        budget.reset_recoveries()

        assert budget.recoveries == 0
        assert budget.next_recovery_delay() == budget.backoff.delay_for(0)

    def test_reset_clears_everything(self):
        budget = RetryBudget()
        budget.record_failure(Phase.EXTRACTING_OUTPUT)
        budget.next_recovery_delay()

        budget.reset()

        assert budget.failures(Phase.EXTRACTING_OUTPUT) == 0
        assert budget.recoveries == 0
