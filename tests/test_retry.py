"""Tests for the shared retry policy."""

import pytest

from agentcore_mock import FakeSleeper
from orchestrator.errors import DependencyInUse, RemoteApiError, TransientApiError
from orchestrator.retry import RetryPolicy


class Flaky:
    """Callable failing with the given errors before succeeding."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        """Test that a successful call is not retried."""
        sleeper = FakeSleeper()
        func = Flaky()

        result = await RetryPolicy().call(func, sleep=sleeper)

        assert result == "ok"
        assert func.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self) -> None:
        """Test that transient errors are retried until success."""
        sleeper = FakeSleeper()
        func = Flaky(TransientApiError("throttled"), TransientApiError("throttled"))

        result = await RetryPolicy.fixed(3, 2.0).call(func, sleep=sleeper)

        assert result == "ok"
        assert func.calls == 3
        assert sleeper.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self) -> None:
        """Test that non-retryable errors propagate immediately."""
        sleeper = FakeSleeper()
        func = Flaky(RemoteApiError("AccessDenied"))

        with pytest.raises(RemoteApiError):
            await RetryPolicy(max_attempts=5).call(func, sleep=sleeper)

        assert func.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_last_error(self) -> None:
        """Test that the last error propagates after the final attempt."""
        sleeper = FakeSleeper()
        first, last = TransientApiError("first"), TransientApiError("last")
        func = Flaky(first, last)

        with pytest.raises(TransientApiError) as exc_info:
            await RetryPolicy.fixed(2, 1.0).call(func, sleep=sleeper)

        assert exc_info.value is last
        assert sleeper.delays == [1.0]

    @pytest.mark.asyncio
    async def test_custom_retryable_predicate(self) -> None:
        """Test that callers choose which errors are retryable."""
        sleeper = FakeSleeper()
        func = Flaky(DependencyInUse("busy"))
        policy = RetryPolicy.fixed(3, 10.0, retryable=lambda e: isinstance(e, DependencyInUse))

        assert await policy.call(func, sleep=sleeper) == "ok"
        assert sleeper.delays == [10.0]

    def test_exponential_backoff(self) -> None:
        """Test that the delay grows by the multiplier."""
        policy = RetryPolicy(backoff_seconds=1.0, multiplier=2.0, jitter=0.0)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_jitter_bounded(self) -> None:
        """Test that jitter never exceeds its fraction of the backoff."""
        policy = RetryPolicy(backoff_seconds=10.0, multiplier=1.0, jitter=0.2)

        for _ in range(20):
            assert 10.0 <= policy.delay_for(1) <= 12.0

    def test_zero_attempts_rejected(self) -> None:
        """Test that a policy must allow at least one attempt."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
