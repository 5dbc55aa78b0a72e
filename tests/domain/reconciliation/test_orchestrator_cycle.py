"""Tests for monitoring cycles run by the orchestrator."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from reconspine.core.errors import (
    CircuitOpenError,
    JobNotFoundError,
    PersistenceError,
    StorageError,
    ValidationError,
)
from reconspine.domain.reconciliation.cache_updater import snapshot_key
from reconspine.domain.reconciliation.models import (
    CacheUpdateResult,
    JobStatus,
    ReconciliationPhase,
)
from reconspine.domain.reconciliation.orchestrator import (
    SIGNIFICANT_CHANGE_NOTE,
    ReconciliationOrchestrator,
)
from reconspine.domain.reconciliation.storage import FileReconciliationStorage
from reconspine.execution.circuit_breaker import CircuitState
from reconspine.framework.alerts import AlertSeverity


@pytest.fixture
def build_orchestrator(
    storage,
    job_cache,
    config_service,
    change_detector,
    cache_updater,
    storage_executor,
    alert_manager,
    metrics,
    clock,
):
    """Orchestrator factory that lets a test swap individual collaborators."""

    def _build(**overrides):
        deps = dict(
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
        deps.update(overrides)
        return ReconciliationOrchestrator(**deps)

    return _build


class TestStabilization:
    @pytest.mark.asyncio
    async def test_quiet_cycles_reach_finalizing(self, orchestrator, storage, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")

        phases = []
        for _ in range(3):
            clock.advance(days=1)
            status = await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())
            phases.append((status.phase, status.days_stable))

        assert phases == [
            (ReconciliationPhase.STABILIZING, 1),
            (ReconciliationPhase.STABILIZING, 2),
            (ReconciliationPhase.FINALIZING, 3),
        ]
        stored = await storage.get_job(job.id)
        assert stored.status == JobStatus.ACTIVE
        assert stored.progress.phase == ReconciliationPhase.FINALIZING
        assert stored.progress.completion_percentage == 100.0
        assert stored.current_data_date == "2024-01-31"
        assert len((await storage.get_timeline(job.id)).entries) == 3

    @pytest.mark.asyncio
    async def test_partial_progress(self, orchestrator, storage, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=1)
        status = await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())

        assert status.message == "Stabilizing - 1/3 stable days"
        assert status.next_check_date == clock() + timedelta(hours=24)
        assert (await storage.get_job(job.id)).progress.completion_percentage == 33.3

    @pytest.mark.asyncio
    async def test_significant_change_resets_stability(
        self, orchestrator, storage, snapshot, snapshot_cache, clock
    ):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=1)
        await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())
        clock.advance(days=1)
        status = await orchestrator.process_reconciliation_cycle(
            job.id,
            snapshot(as_of_date="2024-02-02", membership_total=1010),
            snapshot(),
        )

        assert status.phase == ReconciliationPhase.MONITORING
        assert status.days_stable == 0
        timeline = await storage.get_timeline(job.id)
        latest = timeline.entries[-1]
        assert latest.is_significant
        assert latest.notes == SIGNIFICANT_CHANGE_NOTE
        assert latest.cache_updated is True
        assert latest.source_data_date == "2024-02-02"

        entry = snapshot_cache.get(snapshot_key("42", "2024-01-31"))
        assert entry["membership_total"] == 1010

    @pytest.mark.asyncio
    async def test_insignificant_change_still_propagated(self, orchestrator, storage, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=1)
        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1001), snapshot()
        )

        assert status.days_stable == 1
        latest = (await storage.get_timeline(job.id)).entries[-1]
        assert latest.changes.has_changes
        assert not latest.is_significant
        assert latest.cache_updated is True
        assert latest.notes is None

    @pytest.mark.asyncio
    async def test_cache_mirror_holds_status(self, orchestrator, job_cache, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=1)
        status = await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())
        assert job_cache.get_status(job.id) == status
        assert job_cache.get_job(job.id).progress.phase == status.phase

    @pytest.mark.asyncio
    async def test_deadline_forces_finalizing(self, orchestrator, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01", {"auto_extension_enabled": False})
        clock.advance(days=16)
        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=2000), snapshot()
        )
        assert status.phase == ReconciliationPhase.FINALIZING
        assert status.days_stable == 0


class TestPropagation:
    @pytest.mark.asyncio
    async def test_updater_called_with_month_end(self, build_orchestrator, snapshot, clock):
        updater = MagicMock()
        updater.update_cache_immediately = AsyncMock(
            return_value=CacheUpdateResult(success=True, updated=True)
        )
        orchestrator = build_orchestrator(cache_updater=updater)
        job = await orchestrator.start_reconciliation("42", "2024-02")
        current = snapshot(membership_total=1200)

        await orchestrator.process_reconciliation_cycle(job.id, current, snapshot())

        args = updater.update_cache_immediately.await_args.args
        assert args[:3] == ("42", "2024-02-29", current)
        assert args[3].has_changes

    @pytest.mark.asyncio
    async def test_no_changes_skips_updater(self, build_orchestrator, snapshot):
        updater = MagicMock()
        updater.update_cache_immediately = AsyncMock()
        orchestrator = build_orchestrator(cache_updater=updater)
        job = await orchestrator.start_reconciliation("42", "2024-01")

        await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())
        updater.update_cache_immediately.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reported_failure_is_absorbed(self, build_orchestrator, storage, snapshot, alert_channel):
        updater = MagicMock()
        updater.update_cache_immediately = AsyncMock(
            return_value=CacheUpdateResult(success=False, error="verification failed")
        )
        orchestrator = build_orchestrator(cache_updater=updater)
        job = await orchestrator.start_reconciliation("42", "2024-01")

        await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )

        assert (await storage.get_timeline(job.id)).entries[-1].cache_updated is False
        [alert] = alert_channel.find(title="Cache Update Failed")
        assert "verification failed" in alert.message

    @pytest.mark.asyncio
    async def test_updater_exception_is_absorbed(self, build_orchestrator, storage, snapshot, alert_channel):
        updater = MagicMock()
        updater.update_cache_immediately = AsyncMock(side_effect=ConnectionError("cache down"))
        orchestrator = build_orchestrator(cache_updater=updater)
        job = await orchestrator.start_reconciliation("42", "2024-01")

        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )

        assert status.phase == ReconciliationPhase.MONITORING
        timeline = await storage.get_timeline(job.id)
        assert len(timeline.entries) == 1
        assert timeline.entries[0].cache_updated is False
        assert alert_channel.titles() == ["Critical Cache Update Error"]


class TestAutoExtension:
    @pytest.mark.asyncio
    async def test_late_significant_change_extends(self, orchestrator, storage, snapshot, metrics, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=14)

        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )

        assert status.message == "Reconciliation extended by 3 days due to significant changes"
        stored = await storage.get_job(job.id)
        assert stored.max_end_date == job.max_end_date + timedelta(days=3)
        assert len((await storage.get_timeline(job.id)).entries) == 1
        assert metrics.get_job_duration_metrics()[0].extension_count == 1

    @pytest.mark.asyncio
    async def test_early_significant_change_does_not_extend(self, orchestrator, storage, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=5)
        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )
        assert status.message == "Monitoring for changes"
        assert (await storage.get_job(job.id)).max_end_date == job.max_end_date

    @pytest.mark.asyncio
    async def test_disabled(self, orchestrator, storage, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01", {"auto_extension_enabled": False})
        clock.advance(days=14)
        await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )
        assert (await storage.get_job(job.id)).max_end_date == job.max_end_date

    @pytest.mark.asyncio
    async def test_allowance_exhausted(self, orchestrator, storage, snapshot, clock):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        await orchestrator.extend_reconciliation(job.id, 5)
        clock.advance(days=19)

        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )
        assert "extended" not in status.message
        assert (await storage.get_job(job.id)).max_end_date == job.max_end_date + timedelta(days=5)

    @pytest.mark.asyncio
    async def test_extension_failure_degrades_message(
        self, orchestrator, storage, snapshot, alert_channel, clock
    ):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        orchestrator._apply_extension = AsyncMock(side_effect=RuntimeError("ext boom"))
        clock.advance(days=14)

        status = await orchestrator.process_reconciliation_cycle(
            job.id, snapshot(membership_total=1200), snapshot()
        )

        assert status.message == "Significant changes detected but extension failed: ext boom"
        [alert] = alert_channel.find(title="Auto-Extension Failed")
        assert alert.severity == AlertSeverity.MEDIUM
        assert alert.context["extension_days"] == 3
        assert "Reconciliation Processing Failed" not in alert_channel.titles()

        timeline = await storage.get_timeline(job.id)
        assert len(timeline.entries) == 1
        assert timeline.entries[0].is_significant
        assert timeline.status.message == status.message
        assert (await storage.get_job(job.id)).max_end_date == job.max_end_date


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_cycles_keep_every_entry(self, orchestrator, storage, snapshot):
        job = await orchestrator.start_reconciliation("42", "2024-01")

        statuses = await asyncio.gather(
            *(orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot()) for _ in range(5))
        )

        assert len(statuses) == 5
        assert len((await storage.get_timeline(job.id)).entries) == 5


class TestFailures:
    @pytest.mark.asyncio
    async def test_unknown_job(self, orchestrator, snapshot, alert_channel):
        with pytest.raises(JobNotFoundError):
            await orchestrator.process_reconciliation_cycle(
                "reconciliation-9-2024-01", snapshot(), snapshot()
            )
        assert alert_channel.titles() == [
            "Reconciliation Failed",
            "Reconciliation Processing Failed",
        ]

    @pytest.mark.asyncio
    async def test_inactive_job_returns_terminal_status(self, orchestrator, storage, snapshot):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        await orchestrator.cancel_reconciliation(job.id)

        status = await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())

        assert status.phase == ReconciliationPhase.FAILED
        assert (await storage.get_timeline(job.id)).entries == []

    @pytest.mark.asyncio
    async def test_detector_failure_is_fatal(self, build_orchestrator, storage, snapshot, alert_channel):
        detector = MagicMock()
        detector.detect_changes.side_effect = RuntimeError("bad snapshot")
        orchestrator = build_orchestrator(change_detector=detector)
        job = await orchestrator.start_reconciliation("42", "2024-01")

        with pytest.raises(RuntimeError, match="bad snapshot"):
            await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())

        titles = alert_channel.titles()
        assert titles[0] == "Change Detection Failed"
        assert "Reconciliation Processing Failed" in titles
        assert (await storage.get_timeline(job.id)).entries == []

    @pytest.mark.asyncio
    async def test_failure_recorded_in_metrics(self, build_orchestrator, snapshot, metrics):
        detector = MagicMock()
        detector.detect_changes.side_effect = RuntimeError("bad snapshot")
        orchestrator = build_orchestrator(change_detector=detector)
        job = await orchestrator.start_reconciliation("42", "2024-01")

        with pytest.raises(RuntimeError):
            await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())

        [metric] = metrics.get_job_duration_metrics()
        assert metric.status == JobStatus.ACTIVE
        assert metric.error == "bad snapshot"
        assert metric.failure_count == 1
        assert metrics.active_jobs.value == 1

    @pytest.mark.asyncio
    async def test_save_failure_raises_persistence_error(
        self, orchestrator, storage, snapshot, alert_channel
    ):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        storage.save_job = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(PersistenceError) as exc_info:
            await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())

        assert str(exc_info.value).startswith(f"Failed to save reconciliation updates for job {job.id}")
        assert "Reconciliation Save Failed" in alert_channel.titles()
        assert storage.save_job.await_count == 3

    @pytest.mark.asyncio
    async def test_open_breaker_fails_cycle(
        self, orchestrator, storage, storage_breaker, snapshot, alert_channel
    ):
        job = await orchestrator.start_reconciliation("42", "2024-01")
        storage_breaker.force_open()

        with pytest.raises(CircuitOpenError, match="reconciliation-storage"):
            await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())

        assert alert_channel.titles() == [
            "Reconciliation Failed",
            "Reconciliation Failed",
            "Reconciliation Processing Failed",
        ]
        assert (await storage.get_timeline(job.id)).entries == []

    @pytest.mark.asyncio
    async def test_malformed_job_ids_leave_storage_breaker_closed(
        self, build_orchestrator, storage_breaker, snapshot, tmp_path, clock
    ):
        orchestrator = build_orchestrator(storage=FileReconciliationStorage(tmp_path, clock=clock))

        for _ in range(3):
            with pytest.raises(ValidationError, match="Invalid job ID format"):
                await orchestrator.process_reconciliation_cycle("bad id", snapshot(), snapshot())

        assert storage_breaker.state == CircuitState.CLOSED
        job = await orchestrator.start_reconciliation("42", "2024-01")
        clock.advance(days=1)
        status = await orchestrator.process_reconciliation_cycle(job.id, snapshot(), snapshot())
        assert status.days_stable == 1
