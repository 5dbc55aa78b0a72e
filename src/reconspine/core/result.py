"""
Result envelope for operations whose failure is absorbed rather than raised.

The orchestrator treats some collaborator calls as best-effort: pushing a
snapshot into downstream caches and auto-extending a job. Those calls return
``Ok`` or ``Err`` and the caller matches on the outcome, logging and alerting
on ``Err`` while the cycle continues.

Examples:
    >>> from reconspine.core.result import Ok, Err, Result
    >>> def divide(a: int, b: int) -> Result[float]:
    ...     if b == 0:
    ...         return Err(ValueError("Division by zero"))
    ...     return Ok(a / b)
    >>> match divide(10, 2):
    ...     case Ok(value):
    ...         print(f"Result: {value}")
    ...     case Err(error):
    ...         print(f"Error: {error}")
    Result: 5.0

Guardrails:
    ❌ DON'T: Call unwrap() without checking is_ok() first
    ✅ DO: Use pattern matching or unwrap_or()

Tags:
    result-pattern, error-handling, best-effort
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from reconspine.core.errors import ReconError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value."""
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Chain to another Result-returning function."""
        return f(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed result containing an error.

    ``map`` and ``flat_map`` short-circuit, so a chain that starts failing
    stays failed without raising.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        return Err(self.error)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, ReconError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """Run a callable and capture any exception as ``Err``."""
    try:
        return Ok(f())
    except Exception as e:
        return Err(e)


async def try_result_async(f: Callable[[], Awaitable[T]]) -> Result[T]:
    """Await a coroutine factory and capture any exception as ``Err``."""
    try:
        return Ok(await f())
    except Exception as e:
        return Err(e)


def from_optional(value: T | None, error: Exception) -> Result[T]:
    """Convert an optional value to Result."""
    if value is None:
        return Err(error)
    return Ok(value)


def partition_results(results: list[Result[T]]) -> tuple[list[T], list[Exception]]:
    """Split results into (successes, failures)."""
    successes: list[T] = []
    failures: list[Exception] = []
    for r in results:
        match r:
            case Ok(value):
                successes.append(value)
            case Err(error):
                failures.append(error)
    return successes, failures


__all__ = [
    "Ok",
    "Err",
    "Result",
    "try_result",
    "try_result_async",
    "from_optional",
    "partition_results",
]
