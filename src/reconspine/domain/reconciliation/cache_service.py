"""
Read-through mirror of jobs, timelines and derived statuses.

:class:`ReconciliationCacheService` stores ``to_dict()`` output in an
:class:`~reconspine.core.cache.InMemoryCache` under ``job:``, ``timeline:``
and ``status:`` prefixes and rebuilds dataclasses on the way out, so a
caller mutating a returned job never changes the cached copy.

:func:`read_through` composes a cache lookup with a storage loader:
try the cache, on a miss call the loader and populate the cache with what
it returns.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from reconspine.core.cache import InMemoryCache
from reconspine.core.logging import get_logger
from reconspine.domain.reconciliation.models import (
    ReconciliationJob,
    ReconciliationStatus,
    ReconciliationTimeline,
)

logger = get_logger(__name__)

T = TypeVar("T")

JOB_PREFIX = "job:"
TIMELINE_PREFIX = "timeline:"
STATUS_PREFIX = "status:"


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"hits": self.hits, "misses": self.misses, "hit_rate": self.hit_rate}


class ReconciliationCacheService:
    """TTL + LRU mirror keyed by job id."""

    def __init__(self, cache: InMemoryCache | None = None, *, ttl_seconds: int | None = None):
        self._cache = cache or InMemoryCache(max_size=1_000, default_ttl_seconds=1_800)
        self._ttl = ttl_seconds
        self.stats = CacheStats()

    def _get(self, key: str) -> dict[str, Any] | None:
        value = self._cache.get(key)
        if value is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
        return value

    def get_job(self, job_id: str) -> ReconciliationJob | None:
        data = self._get(JOB_PREFIX + job_id)
        return ReconciliationJob.from_dict(data) if data else None

    def set_job(self, job: ReconciliationJob) -> None:
        self._cache.set(JOB_PREFIX + job.id, job.to_dict(), ttl_seconds=self._ttl)

    def get_timeline(self, job_id: str) -> ReconciliationTimeline | None:
        data = self._get(TIMELINE_PREFIX + job_id)
        return ReconciliationTimeline.from_dict(data) if data else None

    def set_timeline(self, timeline: ReconciliationTimeline) -> None:
        self._cache.set(TIMELINE_PREFIX + timeline.job_id, timeline.to_dict(), ttl_seconds=self._ttl)

    def get_status(self, job_id: str) -> ReconciliationStatus | None:
        data = self._get(STATUS_PREFIX + job_id)
        return ReconciliationStatus.from_dict(data) if data else None

    def set_status(self, job_id: str, status: ReconciliationStatus) -> None:
        self._cache.set(STATUS_PREFIX + job_id, status.to_dict(), ttl_seconds=self._ttl)

    def invalidate(self, job_id: str) -> None:
        for prefix in (JOB_PREFIX, TIMELINE_PREFIX, STATUS_PREFIX):
            self._cache.delete(prefix + job_id)
        logger.debug("cache.invalidated", job_id=job_id)

    def clear(self) -> None:
        self._cache.clear()
        self.stats = CacheStats()

    def size(self) -> int:
        return self._cache.size()


async def read_through(
    lookup: Callable[[], T | None],
    load: Callable[[], Awaitable[T | None]],
    populate: Callable[[T], None],
) -> T | None:
    """Return the cached value, or load it and populate the cache."""
    cached = lookup()
    if cached is not None:
        return cached
    loaded = await load()
    if loaded is not None:
        populate(loaded)
    return loaded


__all__ = ["CacheStats", "ReconciliationCacheService", "read_through"]
