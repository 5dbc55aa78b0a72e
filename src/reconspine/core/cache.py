"""
Key-value cache backends.

Two consumers share this abstraction:

- the read-through mirror of jobs, timelines and derived statuses
  (:mod:`reconspine.domain.reconciliation.cache_service`)
- the downstream snapshot cache that readers of district statistics consume
  (:mod:`reconspine.domain.reconciliation.cache_updater`)

Values are stored as-is; callers store plain dicts (``to_dict()`` output) so
a cached value can never alias a live dataclass.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """Protocol for cache backend implementations."""

    def get(self, key: str) -> Any | None:
        """Return the value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value. ``ttl_seconds=None`` uses the backend default."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if it does not exist."""
        ...

    def exists(self, key: str) -> bool:
        ...

    def clear(self) -> None:
        ...


class InMemoryCache:
    """Bounded in-memory cache with TTL and LRU eviction.

    Attributes:
        max_size: Maximum number of keys before LRU eviction.
        default_ttl_seconds: Default TTL for keys (``None`` means no expiry).

    Example:
        cache = InMemoryCache(max_size=500, default_ttl_seconds=1800)
        cache.set("job:reconciliation-42-2024-01", job.to_dict())
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        default_ttl_seconds: int | None = 3600,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._time = time_fn

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._time() > expires_at

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            self.delete(key)
            return None
        self._store.move_to_end(key)
        return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (self._time() + ttl) if ttl else None

        if key not in self._store and len(self._store) >= self._max_size:
            self._store.popitem(last=False)

        self._store[key] = (value, expires_at)
        self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        """Remove all keys."""
        self._store.clear()

    def size(self) -> int:
        """Return current number of cached keys."""
        return len(self._store)

    def keys(self, prefix: str = "") -> list[str]:
        """Live keys starting with ``prefix``."""
        return [k for k in list(self._store) if k.startswith(prefix) and self.exists(k)]


__all__ = ["CacheBackend", "InMemoryCache"]
