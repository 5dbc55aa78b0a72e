"""Resilience primitives for storage calls.

ARCHITECTURE
────────────
::

    ResilientExecutor.execute(op) -> Ok | Err
      └── CircuitBreaker.call_async    fail fast while open
            └── RetryContext.run_async bounded exponential backoff
                  └── op()
"""

from reconspine.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from reconspine.execution.resilience import ResilientExecutor
from reconspine.execution.retry import ExponentialBackoff, NoRetry, RetryContext, RetryStrategy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "ResilientExecutor",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
]
