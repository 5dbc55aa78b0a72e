"""
Retry strategies for storage calls.

Only errors :func:`~reconspine.core.errors.is_retryable` considers transient
are retried; validation and not-found failures surface on the first attempt.

Example:
    >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3, base_delay=0.5))
    >>> job = await ctx.run_async(storage.get_job, job_id)
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from reconspine.core.errors import is_retryable
from reconspine.core.logging import get_logger
from reconspine.core.timestamps import utc_now

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (zero-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt may follow ``attempt`` completed attempts."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retry_on: Predicate deciding which errors are worth retrying
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retry_on: Callable[[Exception], bool] = is_retryable

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False
        if error is not None:
            return self.retry_on(error)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Tracks one retried call.

    Attributes:
        strategy: Backoff policy
        on_retry: Callback before each retry (attempt, error, delay)
        sleep: Awaitable sleep, replaceable in tests
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Sleeper = asyncio.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        return self.attempt

    async def run_async(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Execute an async function with retry logic.

        Raises:
            The last exception once retries are exhausted or the error is
            not retryable.
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utc_now()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1)
                logger.debug(
                    "retry.scheduled",
                    attempt=self.attempt,
                    delay_seconds=round(delay, 3),
                    error=str(e),
                )
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                await self.sleep(delay)


__all__ = ["RetryStrategy", "ExponentialBackoff", "NoRetry", "RetryContext"]
