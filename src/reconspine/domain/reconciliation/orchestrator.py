"""
Reconciliation orchestrator.

Owns the lifecycle of reconciliation jobs and runs one monitoring cycle at a
time per job: diff the fresh snapshot against the cached one, push changes
downstream, record the observation, recompute the phase, extend the window
when late changes arrive, and persist.

Manifesto:
    A month is only final once its data stopped moving. The orchestrator
    never decides that on a single observation: it records every cycle in an
    append-only timeline and derives the phase from the trailing run of
    quiet cycles. Anything that could leave the job's authoritative state
    inconsistent (a failed save, a broken detector) is surfaced to the
    caller. Anything that merely enhances a cycle (downstream propagation,
    auto-extension) is logged and alerted but never blocks progress.

Architecture:
    ::

        process_reconciliation_cycle(job_id, current, cached)
            │
            ├─ 1  read_through(cache → resilient storage read bundle)
            ├─ 2  inactive? → terminal status, done
            ├─ 3  detector.detect_changes(district, cached, current)   fatal
            ├─ 4  detector.is_significant_change(changes, thresholds)
            ├─ 5  cache_updater.update_cache_immediately(...)          absorbed
            ├─ 6  timeline.append(entry)
            ├─ 7  job.current_data_date / updated_at
            ├─ 8  calculate_reconciliation_status(...)
            ├─ 9  auto-extension (significant + enabled)               absorbed
            ├─ 10 resilient save bundle (storage + cache mirror)       fatal
            └─ 11 return status

    Storage bundles run through a :class:`ResilientExecutor` (circuit
    breaker ``reconciliation-storage`` around a bounded retry). Detection and
    propagation are never retried.

Concurrency:
    Cycles, extensions, cancellation and finalization on the same job id are
    serialized by a :class:`JobLockRegistry`. Auto-extension inside a cycle
    goes through the lock-free ``_apply_extension`` since the cycle already
    holds the job's lock.

Examples:
    >>> services = build_services(settings)
    >>> orchestrator = services.orchestrator
    >>> job = await orchestrator.start_reconciliation("42", "2024-01")
    >>> status = await orchestrator.process_reconciliation_cycle(job.id, current, cached)
    >>> status.phase
    <ReconciliationPhase.MONITORING: 'monitoring'>

Tags:
    reconciliation, orchestrator, lifecycle, resilience
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from reconspine.core.errors import (
    ExtensionLimitError,
    JobNotFoundError,
    PersistenceError,
    StabilityPeriodNotMetError,
    TimelineNotFoundError,
    ValidationError,
)
from reconspine.core.logging import LogContext, get_logger
from reconspine.core.result import Err, Ok, try_result_async
from reconspine.core.timestamps import Clock, month_end_date, utc_now
from reconspine.domain.reconciliation import validation
from reconspine.domain.reconciliation.cache_service import read_through
from reconspine.domain.reconciliation.contracts import (
    CacheMirror,
    CacheUpdater,
    ChangeDetector,
    ConfigStore,
    ReconciliationStorage,
)
from reconspine.domain.reconciliation.extension import (
    build_extension_info,
    calculate_current_extension_days,
    should_extend_reconciliation,
)
from reconspine.domain.reconciliation.locks import JobLockRegistry
from reconspine.domain.reconciliation.models import (
    DataChanges,
    DistrictStatistics,
    ExtensionInfo,
    JobMetadata,
    JobProgress,
    JobStatus,
    ReconciliationConfig,
    ReconciliationEntry,
    ReconciliationJob,
    ReconciliationPhase,
    ReconciliationStatus,
    ReconciliationTimeline,
    TriggeredBy,
    make_job_id,
)
from reconspine.domain.reconciliation.status import (
    MSG_CANCELLED_BY_USER,
    MSG_FINALIZED,
    MSG_STARTED,
    calculate_days_active,
    calculate_days_stable,
    calculate_reconciliation_status,
    get_job_status,
    has_stability_period_been_met,
)
from reconspine.domain.reconciliation.validation import ConfigValidationResult
from reconspine.execution.resilience import ResilientExecutor
from reconspine.framework.alerts import AlertCategory, AlertManager, AlertSeverity
from reconspine.observability.reconciliation_metrics import ReconciliationMetricsService

logger = get_logger(__name__)

SIGNIFICANT_CHANGE_NOTE = "Significant changes detected"


def _completion_percentage(job: ReconciliationJob, status: ReconciliationStatus) -> float:
    if status.phase in (ReconciliationPhase.FINALIZING, ReconciliationPhase.COMPLETED):
        return 100.0
    window = job.config.stability_period_days
    return round(min(status.days_stable / window, 1.0) * 100, 1)


class ReconciliationOrchestrator:
    """Job lifecycle and cycle processing for month-end reconciliation."""

    def __init__(
        self,
        *,
        storage: ReconciliationStorage,
        cache: CacheMirror,
        config_service: ConfigStore,
        change_detector: ChangeDetector,
        cache_updater: CacheUpdater,
        storage_executor: ResilientExecutor,
        alert_manager: AlertManager,
        metrics: ReconciliationMetricsService,
        locks: JobLockRegistry | None = None,
        clock: Clock = utc_now,
    ):
        self._storage = storage
        self._cache = cache
        self._config = config_service
        self._detector = change_detector
        self._cache_updater = cache_updater
        self._executor = storage_executor
        self._alerts = alert_manager
        self._metrics = metrics
        self._locks = locks or JobLockRegistry()
        self._clock = clock

    # =========================================================================
    # JOB LIFECYCLE
    # =========================================================================

    async def start_reconciliation(
        self,
        district_id: str,
        target_month: str,
        config_override: dict[str, Any] | None = None,
        triggered_by: TriggeredBy | str = TriggeredBy.MANUAL,
    ) -> ReconciliationJob:
        """
        Start reconciling ``target_month`` for ``district_id``.

        Returns the already-active job for the same district and month if
        there is one. An invalid ``config_override`` raises
        :class:`ConfigValidationError` before anything is written.
        """
        triggered_by = TriggeredBy(triggered_by)
        job_id = make_job_id(district_id, target_month)
        logger.info(
            "reconciliation.starting",
            district_id=district_id,
            target_month=target_month,
            triggered_by=triggered_by.value,
        )

        config = await self._config.get_config()
        if config_override:
            result = validation.validate_configuration(config_override, config)
            config = result.raise_if_invalid()

        async with self._locks.hold(job_id):
            await self._storage.flush()
            existing = await self._storage.get_jobs_by_district(district_id)
            active = next(
                (j for j in existing if j.target_month == target_month and j.is_active), None
            )
            if active is not None:
                logger.warning(
                    "reconciliation.already_active",
                    district_id=district_id,
                    target_month=target_month,
                    existing_job_id=active.id,
                )
                return active

            now = self._clock()
            job = ReconciliationJob(
                id=job_id,
                district_id=district_id,
                target_month=target_month,
                status=JobStatus.ACTIVE,
                start_date=now,
                max_end_date=now + timedelta(days=config.max_reconciliation_days),
                config=config,
                triggered_by=triggered_by,
                progress=JobProgress(ReconciliationPhase.MONITORING, 0),
                metadata=JobMetadata(created_at=now, updated_at=now, triggered_by=triggered_by),
            )
            timeline = ReconciliationTimeline(
                job_id=job.id,
                district_id=district_id,
                target_month=target_month,
                status=ReconciliationStatus(
                    phase=ReconciliationPhase.MONITORING,
                    days_active=0,
                    days_stable=0,
                    next_check_date=now + timedelta(hours=config.check_frequency_hours),
                    message=MSG_STARTED,
                ),
            )

            await self._storage.save_job(job)
            self._metrics.record_job_start(job)
            await self._storage.save_timeline(timeline)
            # A previous run for the same month shares the id
            self._cache.invalidate(job.id)

        logger.info(
            "reconciliation.started",
            job_id=job.id,
            district_id=district_id,
            target_month=target_month,
            max_end_date=job.max_end_date.isoformat(),
        )
        return job

    async def extend_reconciliation(self, job_id: str, additional_days: int) -> int:
        """
        Push the job's deadline out by up to ``additional_days``.

        Requests beyond the remaining allowance are clamped; a request with
        no allowance left raises :class:`ExtensionLimitError`. Returns the
        number of days actually granted.
        """
        async with self._locks.hold(job_id), LogContext(job_id=job_id):
            return await self._apply_extension(job_id, additional_days)

    async def _apply_extension(self, job_id: str, additional_days: int) -> int:
        job = await self._require_job(job_id)
        if not job.is_active:
            logger.warning("reconciliation.extend_skipped", status=job.status.value)
            return 0
        if additional_days < 0:
            raise ValidationError(
                "Extension days cannot be negative", field="additional_days", value=additional_days
            )
        if additional_days == 0:
            logger.debug("reconciliation.extend_noop")
            return 0

        max_extension = job.config.max_extension_days
        current = calculate_current_extension_days(job)
        granted = additional_days
        if current + additional_days > max_extension:
            remaining = max_extension - current
            if remaining <= 0:
                logger.warning(
                    "reconciliation.extension_limit_reached",
                    current_extension_days=current,
                    max_extension_days=max_extension,
                    requested_days=additional_days,
                )
                raise ExtensionLimitError(job_id, max_extension)
            logger.warning(
                "reconciliation.extension_clamped",
                requested_days=additional_days,
                granted_days=remaining,
                max_extension_days=max_extension,
            )
            granted = remaining

        job.max_end_date = job.max_end_date + timedelta(days=granted)
        job.metadata.updated_at = self._clock()
        await self._storage.save_job(job)
        self._cache.set_job(job)
        self._metrics.record_job_extension(job_id, granted)

        logger.info(
            "reconciliation.extended",
            additional_days=granted,
            total_extension_days=current + granted,
            new_max_end_date=job.max_end_date.isoformat(),
        )
        return granted

    async def cancel_reconciliation(self, job_id: str) -> None:
        async with self._locks.hold(job_id), LogContext(job_id=job_id):
            job = await self._require_job(job_id)
            if not job.is_active:
                logger.warning("reconciliation.cancel_skipped", status=job.status.value)
                return

            now = self._clock()
            job.status = JobStatus.CANCELLED
            job.end_date = now
            job.metadata.updated_at = now
            job.progress = JobProgress(ReconciliationPhase.FAILED, job.progress.completion_percentage)

            timeline = await self._storage.get_timeline(job_id)
            stability_days = 0
            if timeline is not None:
                stability_days = calculate_days_stable(timeline)
                timeline.status = ReconciliationStatus(
                    phase=ReconciliationPhase.FAILED,
                    days_active=calculate_days_active(job, now),
                    days_stable=stability_days,
                    message=MSG_CANCELLED_BY_USER,
                )
                await self._storage.save_timeline(timeline)
            await self._storage.save_job(job)
            await self._storage.flush()

            self._cache.invalidate(job_id)
            self._metrics.record_job_completion(job, stability_days)
            logger.info("reconciliation.cancelled", stability_days=stability_days)

    async def finalize_reconciliation(self, job_id: str) -> None:
        """
        Mark the job completed.

        Raises :class:`StabilityPeriodNotMetError` (job stays active) unless
        the stability window was met or the deadline has passed.
        """
        async with self._locks.hold(job_id), LogContext(job_id=job_id):
            job = await self._require_job(job_id)
            if not job.is_active:
                logger.warning("reconciliation.finalize_skipped", status=job.status.value)
                return
            timeline = await self._require_timeline(job_id)

            now = self._clock()
            if not has_stability_period_been_met(job, timeline, now):
                days_stable = calculate_days_stable(timeline)
                logger.warning(
                    "reconciliation.finalize_before_stable",
                    stability_period_days=job.config.stability_period_days,
                    days_stable=days_stable,
                )
                raise StabilityPeriodNotMetError(
                    job_id, job.config.stability_period_days, days_stable
                )

            job.status = JobStatus.COMPLETED
            job.end_date = now
            job.finalized_date = now
            job.metadata.updated_at = now
            job.progress = JobProgress(ReconciliationPhase.COMPLETED, 100.0)
            timeline.status = ReconciliationStatus(
                phase=ReconciliationPhase.COMPLETED,
                days_active=calculate_days_active(job, now),
                days_stable=calculate_days_stable(timeline),
                message=MSG_FINALIZED,
            )

            await self._storage.save_job(job)
            await self._storage.save_timeline(timeline)
            await self._storage.flush()

            self._cache.invalidate(job_id)
            self._metrics.record_job_completion(job, timeline.status.days_stable)
            logger.info(
                "reconciliation.finalized",
                district_id=job.district_id,
                target_month=job.target_month,
                days_active=timeline.status.days_active,
                days_stable=timeline.status.days_stable,
            )

    # =========================================================================
    # CYCLE PROCESSING
    # =========================================================================

    async def process_reconciliation_cycle(
        self,
        job_id: str,
        current_data: DistrictStatistics,
        cached_data: DistrictStatistics,
    ) -> ReconciliationStatus:
        """Run one monitoring cycle and return the job's new status."""
        async with self._locks.hold(job_id), LogContext(job_id=job_id):
            logger.debug("reconciliation.cycle_started")
            try:
                return await self._run_cycle(job_id, current_data, cached_data)
            except Exception as e:
                await self._report_cycle_failure(job_id, e)
                raise

    async def _run_cycle(
        self,
        job_id: str,
        current_data: DistrictStatistics,
        cached_data: DistrictStatistics,
    ) -> ReconciliationStatus:
        job, timeline = await self._load_job_and_timeline(job_id)

        if not job.is_active:
            logger.warning("reconciliation.cycle_on_inactive_job", status=job.status.value)
            return get_job_status(job, self._clock())

        changes = await self._detect_changes(job, current_data, cached_data)
        is_significant = self._detector.is_significant_change(
            changes, job.config.significant_change_thresholds
        )

        cache_updated = False
        if changes.has_changes:
            cache_updated = await self._propagate_changes(job, current_data, changes)

        now = self._clock()
        timeline.append(
            ReconciliationEntry(
                date=now,
                source_data_date=changes.source_data_date,
                changes=changes,
                is_significant=is_significant,
                cache_updated=cache_updated,
                notes=SIGNIFICANT_CHANGE_NOTE if is_significant else None,
            )
        )
        job.current_data_date = changes.source_data_date
        job.metadata.updated_at = now

        status = calculate_reconciliation_status(job, timeline, now)

        if is_significant and job.config.auto_extension_enabled:
            message = await self._auto_extend(job, timeline, now)
            if message is not None:
                status.message = message

        timeline.status = status
        job.progress = JobProgress(status.phase, _completion_percentage(job, status))
        await self._save_cycle(job, timeline, status)

        logger.debug(
            "reconciliation.cycle_processed",
            has_changes=changes.has_changes,
            is_significant=is_significant,
            cache_updated=cache_updated,
            phase=status.phase.value,
        )
        return status

    async def _load_job_and_timeline(
        self, job_id: str
    ) -> tuple[ReconciliationJob, ReconciliationTimeline]:
        def lookup() -> tuple[ReconciliationJob, ReconciliationTimeline] | None:
            job = self._cache.get_job(job_id)
            timeline = self._cache.get_timeline(job_id)
            return (job, timeline) if job is not None and timeline is not None else None

        def populate(bundle: tuple[ReconciliationJob, ReconciliationTimeline]) -> None:
            self._cache.set_job(bundle[0])
            self._cache.set_timeline(bundle[1])

        async def fetch() -> tuple[ReconciliationJob | None, ReconciliationTimeline | None]:
            return await self._storage.get_job(job_id), await self._storage.get_timeline(job_id)

        async def load() -> tuple[ReconciliationJob, ReconciliationTimeline]:
            match await self._executor.execute(fetch, operation_name="load_cycle", job_id=job_id):
                case Err(error):
                    await self._alerts.send_reconciliation_failure_alert(
                        "unknown", "unknown", str(error), job_id
                    )
                    raise error
                case Ok((job, timeline)):
                    pass

            missing = None
            if job is None:
                missing = JobNotFoundError(job_id)
            elif timeline is None:
                missing = TimelineNotFoundError(job_id)
            if missing is not None:
                await self._alerts.send_reconciliation_failure_alert(
                    "unknown", "unknown", missing.message, job_id
                )
                raise missing
            return job, timeline

        return await read_through(lookup, load, populate)

    async def _detect_changes(
        self,
        job: ReconciliationJob,
        current_data: DistrictStatistics,
        cached_data: DistrictStatistics,
    ) -> DataChanges:
        try:
            return self._detector.detect_changes(job.district_id, cached_data, current_data)
        except Exception as e:
            logger.error("reconciliation.change_detection_failed", error=str(e))
            await self._alerts.send_alert(
                AlertSeverity.MEDIUM,
                AlertCategory.RECONCILIATION,
                "Change Detection Failed",
                f"Change detection failed for job {job.id}: {e}",
                {"job_id": job.id, "district_id": job.district_id, "error": str(e)},
            )
            raise

    async def _propagate_changes(
        self,
        job: ReconciliationJob,
        current_data: DistrictStatistics,
        changes: DataChanges,
    ) -> bool:
        """Push the snapshot downstream. Returns whether the cache was updated."""

        async def update():
            date = month_end_date(job.target_month)
            return date, await self._cache_updater.update_cache_immediately(
                job.district_id, date, current_data, changes
            )

        match await try_result_async(update):
            case Ok((_, result)) if result.success:
                return result.updated
            case Ok((date, result)):
                logger.error(
                    "reconciliation.cache_update_failed",
                    district_id=job.district_id,
                    date=date,
                    error=result.error,
                )
                await self._alerts.send_alert(
                    AlertSeverity.MEDIUM,
                    AlertCategory.SYSTEM,
                    "Cache Update Failed",
                    "Cache update failed during reconciliation for district "
                    f"{job.district_id}: {result.error}",
                    {
                        "job_id": job.id,
                        "district_id": job.district_id,
                        "date": date,
                        "error": result.error,
                    },
                )
                return False
            case Err(error):
                logger.error("reconciliation.cache_update_error", error=str(error))
                await self._alerts.send_alert(
                    AlertSeverity.HIGH,
                    AlertCategory.SYSTEM,
                    "Critical Cache Update Error",
                    "Critical error updating cache during reconciliation for job "
                    f"{job.id}: {error}",
                    {"job_id": job.id, "district_id": job.district_id, "error": str(error)},
                )
                return False

    async def _auto_extend(
        self, job: ReconciliationJob, timeline: ReconciliationTimeline, now: datetime
    ) -> str | None:
        """Extend on late significant changes. Returns a status message override."""
        decision = should_extend_reconciliation(job, timeline, now)
        if not decision.should_extend:
            logger.debug("reconciliation.auto_extension_skipped", reason=decision.reason)
            return None

        async def extend_and_reload() -> int:
            granted = await self._apply_extension(job.id, decision.extension_days)
            stored = await self._storage.get_job(job.id)
            if stored is not None:
                job.max_end_date = stored.max_end_date
                job.metadata = stored.metadata
            return granted

        match await try_result_async(extend_and_reload):
            case Ok(granted):
                logger.info(
                    "reconciliation.auto_extended",
                    extension_days=granted,
                    reason=decision.reason,
                )
                return f"Reconciliation extended by {granted} days due to significant changes"
            case Err(error):
                logger.warning(
                    "reconciliation.auto_extension_failed",
                    extension_days=decision.extension_days,
                    error=str(error),
                )
                await self._alerts.send_alert(
                    AlertSeverity.MEDIUM,
                    AlertCategory.RECONCILIATION,
                    "Auto-Extension Failed",
                    f"Automatic reconciliation extension failed for job {job.id}: {error}",
                    {
                        "job_id": job.id,
                        "extension_days": decision.extension_days,
                        "error": str(error),
                    },
                )
                return f"Significant changes detected but extension failed: {error}"

    async def _save_cycle(
        self,
        job: ReconciliationJob,
        timeline: ReconciliationTimeline,
        status: ReconciliationStatus,
    ) -> None:
        async def save() -> None:
            await self._storage.save_job(job)
            await self._storage.save_timeline(timeline)
            self._cache.set_job(job)
            self._cache.set_timeline(timeline)
            self._cache.set_status(job.id, status)

        match await self._executor.execute(save, operation_name="save_cycle", job_id=job.id):
            case Err(error):
                message = f"Failed to save reconciliation updates for job {job.id}: {error}"
                logger.error("reconciliation.save_failed", error=str(error))
                await self._alerts.send_alert(
                    AlertSeverity.HIGH,
                    AlertCategory.SYSTEM,
                    "Reconciliation Save Failed",
                    message,
                    {"job_id": job.id, "error": str(error)},
                )
                raise PersistenceError(message, cause=error).with_context(
                    job_id=job.id,
                    district_id=job.district_id,
                    target_month=job.target_month,
                    operation="save_cycle",
                )

    async def _report_cycle_failure(self, job_id: str, error: Exception) -> None:
        message = str(error)
        logger.error("reconciliation.cycle_failed", error=message)

        async def record_failure() -> None:
            job = await self._storage.get_job(job_id)
            if job is not None:
                await self._metrics.record_job_failure(job, message)

        match await try_result_async(record_failure):
            case Err(metrics_error):
                logger.warning("reconciliation.failure_metrics_failed", error=str(metrics_error))

        await self._alerts.send_alert(
            AlertSeverity.HIGH,
            AlertCategory.RECONCILIATION,
            "Reconciliation Processing Failed",
            f"Critical error processing reconciliation cycle for job {job_id}: {message}",
            {"job_id": job_id, "error": message},
        )

    # =========================================================================
    # QUERIES & CONFIGURATION
    # =========================================================================

    async def get_extension_info(self, job_id: str) -> ExtensionInfo:
        return build_extension_info(await self._require_job(job_id))

    async def get_job_status(self, job_id: str) -> ReconciliationStatus:
        """Current status of a job, recomputed from its timeline while active."""
        job = await self._require_job(job_id)
        now = self._clock()
        if not job.is_active:
            return get_job_status(job, now)
        timeline = await self._require_timeline(job_id)
        return calculate_reconciliation_status(job, timeline, now)

    async def validate_configuration(self, partial: dict[str, Any]) -> ConfigValidationResult:
        return validation.validate_configuration(partial, await self._config.get_config())

    async def get_default_configuration(self) -> ReconciliationConfig:
        return await self._config.get_config()

    async def update_configuration(self, updates: dict[str, Any]) -> ReconciliationConfig:
        return await self._config.update_config(updates)

    async def _require_job(self, job_id: str) -> ReconciliationJob:
        job = await self._storage.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _require_timeline(self, job_id: str) -> ReconciliationTimeline:
        timeline = await self._storage.get_timeline(job_id)
        if timeline is None:
            raise TimelineNotFoundError(job_id)
        return timeline


__all__ = ["ReconciliationOrchestrator", "SIGNIFICANT_CHANGE_NOTE"]
