"""
Tests for bounded retries and the cancellable clock.
"""

import pytest

from rg_teardown.model import CallResult, Outcome
from rg_teardown.retry import RetryExecutor, RetryPolicy, TeardownCancelled

from fakes import FakeClock


def scripted(*outcomes):
    results = [CallResult(o, o.value) for o in outcomes]

    def call():
        return results.pop(0)

    return call


class TestRetryPolicy:
    """Test backoff delays."""

    def test_exponential_and_capped(self):
        """Test doubling from the base delay up to the cap."""
        policy = RetryPolicy(attempts=8, base_delay=5, max_delay=60)
        assert [policy.delay(n) for n in range(1, 7)] == [5, 10, 20, 40, 60, 60]


class TestRetryExecutor:
    """Test which outcomes are retried."""

    def test_transient_then_success(self):
        """Test that transient failures are retried with backoff."""
        clock = FakeClock()
        ex = RetryExecutor(RetryPolicy(attempts=5, base_delay=5, max_delay=60), clock)
        attempt = ex.execute("/x", scripted(Outcome.TRANSIENT, Outcome.TRANSIENT, Outcome.SUCCESS))

        assert attempt.ok
        assert attempt.attempts == 3
        assert clock.sleeps == [5, 10]
        assert attempt.backoff_elapsed == 15

    def test_gives_up_after_attempts(self):
        """Test that the last transient outcome is returned when attempts run out."""
        clock = FakeClock()
        ex = RetryExecutor(RetryPolicy(attempts=3, base_delay=1, max_delay=60), clock)
        attempt = ex.execute("/x", scripted(*[Outcome.TRANSIENT] * 3))

        assert attempt.outcome is Outcome.TRANSIENT
        assert attempt.attempts == 3
        assert clock.sleeps == [1, 2]

    @pytest.mark.parametrize(
        "outcome", [Outcome.BLOCKED, Outcome.PERMISSION, Outcome.PERMANENT, Outcome.NOT_FOUND]
    )
    def test_not_retried(self, outcome):
        """Test that only transient failures are retried."""
        clock = FakeClock()
        attempt = RetryExecutor(RetryPolicy(), clock).execute("/x", scripted(outcome))

        assert attempt.attempts == 1
        assert attempt.outcome is outcome
        assert clock.sleeps == []

    def test_not_found_is_ok(self):
        """Test that deleting something already gone counts as done."""
        attempt = RetryExecutor(RetryPolicy(), FakeClock()).execute("/x", scripted(Outcome.NOT_FOUND))
        assert attempt.ok

    def test_cancel_during_backoff(self):
        """Test that cancellation interrupts the backoff sleep."""
        clock = FakeClock(cancel_at=1)
        ex = RetryExecutor(RetryPolicy(attempts=5), clock)
        with pytest.raises(TeardownCancelled):
            ex.execute("/x", scripted(Outcome.TRANSIENT, Outcome.SUCCESS))
