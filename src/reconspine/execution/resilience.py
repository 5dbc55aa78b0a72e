"""
Resilient execution of storage operations.

:class:`ResilientExecutor` runs an async operation inside a retry loop, and
the whole loop inside a circuit breaker, returning ``Ok(value)`` or
``Err(error)`` with the underlying error preserved. The orchestrator uses one
executor for the ``reconciliation-storage`` dependency and wraps its read and
save bundles with it.

Example:
    executor = ResilientExecutor(breaker, lambda: ExponentialBackoff(max_attempts=3))
    match await executor.execute(load_bundle, operation_name="load_job"):
        case Ok(bundle):
            ...
        case Err(error):
            raise error
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from reconspine.core.logging import get_logger
from reconspine.core.result import Err, Ok, Result
from reconspine.execution.circuit_breaker import CircuitBreaker
from reconspine.execution.retry import RetryContext, RetryStrategy, Sleeper

logger = get_logger(__name__)

T = TypeVar("T")


class ResilientExecutor:
    """Circuit breaker around a retry loop around an operation."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        strategy_factory: Callable[[], RetryStrategy],
        *,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.breaker = breaker
        self._strategy_factory = strategy_factory
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "operation",
        **context: Any,
    ) -> Result[T]:
        """Run ``operation``; never raises for operation failures."""
        retry = RetryContext(strategy=self._strategy_factory(), sleep=self._sleep)
        try:
            value = await self.breaker.call_async(retry.run_async, operation)
        except Exception as e:
            logger.warning(
                "resilience.operation_failed",
                operation=operation_name,
                circuit=self.breaker.name,
                attempts=retry.attempts,
                error=str(e),
                **context,
            )
            return Err(e)
        return Ok(value)


__all__ = ["ResilientExecutor"]
