"""
Shared pytest fixtures for reconspine tests.

This module provides:
- A frozen UTC clock every component shares
- In-memory storage, caches, alert channel and metrics
- A fully wired orchestrator built from those pieces
- Factories for district snapshots, jobs and timelines

Usage:
    Fixtures are auto-discovered by pytest. Request them as arguments:

    @pytest.mark.asyncio
    async def test_something(orchestrator, snapshot):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        ...
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Callable

import pytest

from reconspine.core.cache import InMemoryCache
from reconspine.core.timestamps import FrozenClock
from reconspine.domain.reconciliation.cache_service import ReconciliationCacheService
from reconspine.domain.reconciliation.cache_updater import SnapshotCacheUpdater
from reconspine.domain.reconciliation.change_detection import ChangeDetectionEngine
from reconspine.domain.reconciliation.config_service import ReconciliationConfigService
from reconspine.domain.reconciliation.models import (
    DataChanges,
    DistrictStatistics,
    JobMetadata,
    JobStatus,
    ReconciliationConfig,
    ReconciliationEntry,
    ReconciliationJob,
    ReconciliationPhase,
    ReconciliationStatus,
    ReconciliationTimeline,
    make_job_id,
)
from reconspine.domain.reconciliation.orchestrator import ReconciliationOrchestrator
from reconspine.domain.reconciliation.storage import InMemoryReconciliationStorage
from reconspine.execution.circuit_breaker import CircuitBreaker
from reconspine.execution.resilience import ResilientExecutor
from reconspine.execution.retry import ExponentialBackoff
from reconspine.framework.alerts import AlertManager, MemoryChannel
from reconspine.observability.metrics import MetricsRegistry
from reconspine.observability.reconciliation_metrics import ReconciliationMetricsService

START = datetime(2024, 2, 1, tzinfo=UTC)


async def no_sleep(_delay: float) -> None:
    return None


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at 2024-02-01T00:00Z."""
    return FrozenClock(START)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def storage(clock) -> InMemoryReconciliationStorage:
    return InMemoryReconciliationStorage(clock=clock)


@pytest.fixture
def alert_channel() -> MemoryChannel:
    return MemoryChannel()


@pytest.fixture
def alert_manager(clock, alert_channel) -> AlertManager:
    """Alert manager without throttling so every alert is observable."""
    manager = AlertManager(throttle_window=timedelta(0), clock=clock)
    manager.register(alert_channel)
    return manager


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def metrics(metrics_registry, alert_manager, clock) -> ReconciliationMetricsService:
    return ReconciliationMetricsService(metrics_registry, alert_manager, clock=clock)


@pytest.fixture
def job_cache() -> ReconciliationCacheService:
    return ReconciliationCacheService(InMemoryCache(max_size=100, default_ttl_seconds=None))


@pytest.fixture
def config_service(storage) -> ReconciliationConfigService:
    return ReconciliationConfigService(storage)


@pytest.fixture
def change_detector(clock) -> ChangeDetectionEngine:
    return ChangeDetectionEngine(clock=clock)


@pytest.fixture
def snapshot_cache() -> InMemoryCache:
    return InMemoryCache(max_size=100, default_ttl_seconds=None)


@pytest.fixture
def cache_updater(snapshot_cache, clock) -> SnapshotCacheUpdater:
    return SnapshotCacheUpdater(snapshot_cache, clock=clock)


@pytest.fixture
def storage_breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(
        name="reconciliation-storage",
        failure_threshold=3,
        recovery_timeout=30.0,
        clock=clock,
    )


@pytest.fixture
def storage_executor(storage_breaker) -> ResilientExecutor:
    """Executor retrying three times without real sleeps."""
    return ResilientExecutor(
        storage_breaker,
        lambda: ExponentialBackoff(max_attempts=3, base_delay=0.01, jitter=False),
        sleep=no_sleep,
    )


# =============================================================================
# Orchestrator
# =============================================================================


@pytest.fixture
def orchestrator(
    storage,
    job_cache,
    config_service,
    change_detector,
    cache_updater,
    storage_executor,
    alert_manager,
    metrics,
    clock,
) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(
        storage=storage,
        cache=job_cache,
        config_service=config_service,
        change_detector=change_detector,
        cache_updater=cache_updater,
        storage_executor=storage_executor,
        alert_manager=alert_manager,
        metrics=metrics,
        clock=clock,
    )


# =============================================================================
# Snapshots
# =============================================================================


@pytest.fixture
def snapshot() -> Callable[..., DistrictStatistics]:
    """Factory for district snapshots with sensible defaults."""

    def _make(district_id: str = "42", as_of_date: str = "2024-01-31", **overrides: Any):
        values = {
            "membership_total": 1000,
            "clubs_total": 50,
            "clubs_active": 48,
            "clubs_distinguished": 20,
        }
        values.update(overrides)
        return DistrictStatistics(district_id=district_id, as_of_date=as_of_date, **values)

    return _make


@pytest.fixture
def make_job(clock) -> Callable[..., ReconciliationJob]:
    """Factory for active jobs started at the fixture clock's current time."""

    def _make(
        district_id: str = "42",
        target_month: str = "2024-01",
        *,
        status: JobStatus = JobStatus.ACTIVE,
        extension_days: int = 0,
        **config: Any,
    ) -> ReconciliationJob:
        now = clock()
        cfg = ReconciliationConfig().merged(config)
        return ReconciliationJob(
            id=make_job_id(district_id, target_month),
            district_id=district_id,
            target_month=target_month,
            status=status,
            start_date=now,
            max_end_date=now + timedelta(days=cfg.max_reconciliation_days + extension_days),
            config=cfg,
            metadata=JobMetadata(created_at=now, updated_at=now),
        )

    return _make


@pytest.fixture
def make_timeline(clock) -> Callable[..., ReconciliationTimeline]:
    """Factory for timelines; ``pattern`` lists entry significance, oldest first, one per day."""

    def _make(job: ReconciliationJob, pattern: list[bool] = ()) -> ReconciliationTimeline:
        timeline = ReconciliationTimeline(
            job_id=job.id,
            district_id=job.district_id,
            target_month=job.target_month,
            status=ReconciliationStatus(ReconciliationPhase.MONITORING, 0, 0, "Monitoring"),
        )
        for i, significant in enumerate(pattern):
            observed = job.start_date + timedelta(days=i)
            timeline.append(
                ReconciliationEntry(
                    date=observed,
                    source_data_date="2024-01-31",
                    changes=DataChanges(
                        has_changes=significant,
                        changed_fields=["membership"] if significant else [],
                        timestamp=observed,
                        source_data_date="2024-01-31",
                    ),
                    is_significant=significant,
                    cache_updated=significant,
                )
            )
        return timeline

    return _make
