"""Tests for retry strategies and RetryContext."""

from unittest.mock import AsyncMock

import pytest

from reconspine.core.errors import StorageError, ValidationError
from reconspine.execution.retry import ExponentialBackoff, NoRetry, RetryContext


class TestExponentialBackoff:
    def test_delays_grow_and_cap(self):
        strategy = ExponentialBackoff(base_delay=1, max_delay=10, multiplier=2, jitter=False)
        assert [strategy.next_delay(i) for i in range(5)] == [1, 2, 4, 8, 10]

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=4, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 3.0 <= strategy.next_delay(0) <= 5.0

    def test_should_retry_respects_attempts(self):
        strategy = ExponentialBackoff(max_attempts=3)
        assert strategy.should_retry(1)
        assert strategy.should_retry(2)
        assert strategy.should_retry(3) is False

    def test_should_retry_only_transient(self):
        strategy = ExponentialBackoff(max_attempts=3)
        assert strategy.should_retry(1, StorageError("x"))
        assert strategy.should_retry(1, ValidationError("x")) is False

    def test_no_retry(self):
        assert NoRetry().should_retry(0, StorageError("x")) is False
        assert NoRetry().next_delay(0) == 0.0


class TestRetryContext:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        op = AsyncMock(side_effect=[StorageError("a"), StorageError("b"), "saved"])
        sleep = AsyncMock()
        ctx = RetryContext(ExponentialBackoff(max_attempts=3, jitter=False), sleep=sleep)

        assert await ctx.run_async(op) == "saved"
        assert ctx.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        op = AsyncMock(side_effect=StorageError("still down"))
        ctx = RetryContext(ExponentialBackoff(max_attempts=3, jitter=False), sleep=AsyncMock())

        with pytest.raises(StorageError, match="still down"):
            await ctx.run_async(op)
        assert op.await_count == 3
        assert len(ctx.errors) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self):
        op = AsyncMock(side_effect=ValidationError("Invalid job ID format"))
        sleep = AsyncMock()
        ctx = RetryContext(ExponentialBackoff(max_attempts=5), sleep=sleep)

        with pytest.raises(ValidationError):
            await ctx.run_async(op)
        assert op.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        seen = []
        op = AsyncMock(side_effect=[StorageError("a"), "ok"])
        ctx = RetryContext(
            ExponentialBackoff(max_attempts=2, jitter=False),
            on_retry=lambda attempt, error, delay: seen.append((attempt, str(error), delay)),
            sleep=AsyncMock(),
        )
        await ctx.run_async(op)
        assert seen == [(1, "a", 1.0)]

    @pytest.mark.asyncio
    async def test_passes_arguments(self):
        op = AsyncMock(return_value=None)
        ctx = RetryContext(NoRetry())
        await ctx.run_async(op, "job-1", flag=True)
        op.assert_awaited_once_with("job-1", flag=True)
