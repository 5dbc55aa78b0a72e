"""
Circuit breaker for the storage dependency.

Once storage fails ``failure_threshold`` times within ``monitoring_window``
seconds the breaker opens and every call fails fast with
:class:`~reconspine.core.errors.CircuitOpenError` until ``recovery_timeout``
elapses. The next call then runs as a half-open probe: success closes the
circuit, failure reopens it.

Only errors accepted by ``counts_as_failure`` move the breaker; by default
those are the transient ones :func:`~reconspine.core.errors.is_retryable`
recognises. A malformed job id says nothing about the health of storage and
passes straight through.

State machine::

    CLOSED ──(N failures inside window)──► OPEN
      ▲                                     │
      │                          (recovery_timeout)
      │                                     ▼
      └───────(probe succeeds)──────── HALF_OPEN ──(probe fails)──► OPEN

Breakers are created by a :class:`CircuitBreakerRegistry` that the
application constructs and passes around; there is no module-level default.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, TypeVar

from reconspine.core.errors import CircuitOpenError, is_retryable
from reconspine.core.logging import get_logger
from reconspine.core.timestamps import Clock, utc_now

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Failure rate as a percentage of completed calls."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rejected_requests": self.rejected_requests,
            "state_changes": self.state_changes,
            "failure_rate": self.failure_rate,
        }


@dataclass
class CircuitBreaker:
    """Circuit breaker for fault tolerance.

    Attributes:
        name: Identifier for this circuit (e.g. ``reconciliation-storage``)
        failure_threshold: Failures inside the window before opening
        recovery_timeout: Seconds to wait before probing recovery
        monitoring_window: Seconds a failure counts toward the threshold
        success_threshold: Probe successes needed in half-open to close
        half_open_max_calls: Max concurrent probes in half-open state
        counts_as_failure: Which exceptions count toward the threshold
        clock: Time source
    """

    name: str = "default"
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    monitoring_window: float = 120.0
    success_threshold: int = 1
    half_open_max_calls: int = 1
    counts_as_failure: Callable[[Exception], bool] = is_retryable
    clock: Clock = utc_now

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: deque = field(default_factory=deque, init=False)
    _success_count: int = field(default=0, init=False)
    _opened_at: datetime | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        """Failures currently inside the monitoring window."""
        with self._lock:
            self._prune_failures(self.clock())
            return len(self._failures)

    def _prune_failures(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.monitoring_window)
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            elapsed = (self.clock() - self._opened_at).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = self.clock()

        if new_state == CircuitState.CLOSED:
            self._failures.clear()
            self._success_count = 0
            self._opened_at = None
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0
        elif new_state == CircuitState.OPEN:
            self._opened_at = self.clock()

        if old_state != new_state:
            logger.info(
                "circuit_breaker.state_changed",
                circuit=self.name,
                from_state=old_state.value,
                to_state=new_state.value,
            )

    def allow_request(self) -> bool:
        """Check if a request should be allowed."""
        with self._lock:
            self._check_state_transition()
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                self._stats.rejected_requests += 1
                return False

            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True

            self._stats.rejected_requests += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = self.clock()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
                else:
                    self._half_open_calls = max(0, self._half_open_calls - 1)

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            now = self.clock()
            self._stats.failed_requests += 1
            self._stats.last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open reopens the circuit
                self._transition_to(CircuitState.OPEN)
                return

            self._failures.append(now)
            self._prune_failures(now)
            if self._state == CircuitState.CLOSED and len(self._failures) >= self.failure_threshold:
                logger.warning(
                    "circuit_breaker.opened",
                    circuit=self.name,
                    failures=len(self._failures),
                    error=str(error) if error else None,
                )
                self._transition_to(CircuitState.OPEN)

    def _release_probe(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        with self._lock:
            self._transition_to(CircuitState.OPEN)

    async def call_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit is open
        """
        if not self.allow_request():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open, rejecting request"
            ).with_context(circuit=self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.counts_as_failure(e):
                self.record_failure(e)
            else:
                self._release_probe()
            raise
        self.record_success()
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "stats": self._stats.to_dict(),
        }


class CircuitBreakerRegistry:
    """Registry of named circuit breakers."""

    def __init__(self, clock: Clock = utc_now):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()
        self._clock = clock

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        **kwargs: Any,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker by name.

        Settings only apply on creation; later calls return the existing
        breaker unchanged.
        """
        with self._lock:
            if name not in self._breakers:
                kwargs.setdefault("clock", self._clock)
                self._breakers[name] = CircuitBreaker(
                    name=name,
                    failure_threshold=failure_threshold,
                    recovery_timeout=recovery_timeout,
                    **kwargs,
                )
            return self._breakers[name]

    def list_all(self) -> list[str]:
        with self._lock:
            return list(self._breakers.keys())

    def reset_all(self) -> None:
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """State of every breaker, for health endpoints."""
        with self._lock:
            return {name: b.to_dict() for name, b in self._breakers.items()}


__all__ = [
    "CircuitState",
    "CircuitStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
