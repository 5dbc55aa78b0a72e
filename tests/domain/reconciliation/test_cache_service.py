"""Tests for the job/timeline/status read-through mirror."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from reconspine.core.cache import InMemoryCache
from reconspine.domain.reconciliation.cache_service import (
    ReconciliationCacheService,
    read_through,
)
from reconspine.domain.reconciliation.contracts import CacheMirror
from reconspine.domain.reconciliation.models import ReconciliationPhase, ReconciliationStatus


class TestReconciliationCacheService:
    def test_job_round_trip_returns_copy(self, job_cache, make_job):
        job = make_job()
        job_cache.set_job(job)

        cached = job_cache.get_job(job.id)
        assert cached == job
        cached.config = cached.config.merged({"stability_period_days": 9})
        assert job_cache.get_job(job.id).config.stability_period_days == 3

    def test_timeline_and_status(self, job_cache, make_job, make_timeline):
        job = make_job()
        timeline = make_timeline(job, [False])
        status = ReconciliationStatus(
            ReconciliationPhase.STABILIZING, 1, 1, "Stabilizing - 1/3 stable days"
        )
        job_cache.set_timeline(timeline)
        job_cache.set_status(job.id, status)

        assert job_cache.get_timeline(job.id) == timeline
        assert job_cache.get_status(job.id) == status

    def test_invalidate_drops_all_prefixes(self, job_cache, make_job, make_timeline):
        job = make_job()
        job_cache.set_job(job)
        job_cache.set_timeline(make_timeline(job))
        job_cache.set_status(job.id, ReconciliationStatus(ReconciliationPhase.MONITORING, 0, 0, "m"))

        job_cache.invalidate(job.id)
        assert job_cache.get_job(job.id) is None
        assert job_cache.get_timeline(job.id) is None
        assert job_cache.get_status(job.id) is None
        assert job_cache.size() == 0

    def test_hit_miss_stats(self, job_cache, make_job):
        job = make_job()
        job_cache.get_job(job.id)
        job_cache.set_job(job)
        job_cache.get_job(job.id)
        assert job_cache.stats.hits == 1
        assert job_cache.stats.misses == 1
        assert job_cache.stats.hit_rate == 0.5

    def test_ttl_expiry(self, make_job):
        now = [0.0]
        cache = ReconciliationCacheService(
            InMemoryCache(default_ttl_seconds=60, time_fn=lambda: now[0])
        )
        job = make_job()
        cache.set_job(job)
        now[0] = 61
        assert cache.get_job(job.id) is None

    def test_clear_resets_stats(self, job_cache, make_job):
        job_cache.set_job(make_job())
        job_cache.get_job("missing")
        job_cache.clear()
        assert job_cache.size() == 0
        assert job_cache.stats.misses == 0

    def test_satisfies_protocol(self, job_cache):
        assert isinstance(job_cache, CacheMirror)


class TestReadThrough:
    @pytest.mark.asyncio
    async def test_hit_skips_loader(self):
        load = AsyncMock()
        populate = MagicMock()
        assert await read_through(lambda: "cached", load, populate) == "cached"
        load.assert_not_awaited()
        populate.assert_not_called()

    @pytest.mark.asyncio
    async def test_miss_loads_and_populates(self):
        load = AsyncMock(return_value="loaded")
        populate = MagicMock()
        assert await read_through(lambda: None, load, populate) == "loaded"
        populate.assert_called_once_with("loaded")

    @pytest.mark.asyncio
    async def test_missing_value_not_populated(self):
        populate = MagicMock()
        assert await read_through(lambda: None, AsyncMock(return_value=None), populate) is None
        populate.assert_not_called()
