"""
Reconciliation job metrics.

Tracks every job from start to completion or failure, exposes aggregate
rates and durations, and watches for operational patterns:

- ``frequent_failures``: three or more jobs with a failure in the last week
- ``extended``: two or more jobs that needed repeated extensions
- ``timeout``: two or more failed jobs that ran past their reconciliation window

Counters and histograms are mirrored into a :class:`MetricsRegistry` for
Prometheus export. A failed cycle on a job that is still active is counted
against the job without finishing it; only a job whose own status is
``failed`` is recorded as finished. Either kind of failure triggers a
reconciliation-failure alert and, when a high-severity pattern first appears,
a pattern alert.
"""

from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from reconspine.core.logging import get_logger
from reconspine.core.timestamps import Clock, to_iso8601, utc_now
from reconspine.domain.reconciliation.models import JobStatus, ReconciliationJob
from reconspine.framework.alerts import AlertCategory, AlertManager, AlertSeverity
from reconspine.observability.metrics import MetricsRegistry

logger = get_logger(__name__)

FREQUENT_FAILURE_THRESHOLD = 3
FREQUENT_FAILURE_WINDOW = timedelta(days=7)
EXTENDED_JOB_THRESHOLD = 2
TIMEOUT_JOB_THRESHOLD = 2


@dataclass
class JobDurationMetric:
    """Per-job record kept by the metrics service."""

    job_id: str
    district_id: str
    target_month: str
    start_time: datetime
    status: JobStatus
    max_reconciliation_days: int
    end_time: datetime | None = None
    duration_seconds: float | None = None
    was_extended: bool = False
    extension_count: int = 0
    extension_days: int = 0
    final_stability_days: int = 0
    error: str | None = None
    failure_count: int = 0
    last_failure_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["start_time"] = to_iso8601(self.start_time)
        data["end_time"] = to_iso8601(self.end_time)
        data["last_failure_time"] = to_iso8601(self.last_failure_time)
        return data


@dataclass
class PerformancePattern:
    pattern: str
    severity: str  # "low" | "medium" | "high"
    description: str
    affected_jobs: list[str] = field(default_factory=list)
    detected_at: datetime | None = None


@dataclass
class ReconciliationMetricsSummary:
    total_jobs: int = 0
    active_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    extended_jobs: int = 0
    jobs_with_cycle_failures: int = 0
    cycle_failures: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    extension_rate: float = 0.0
    average_duration_seconds: float = 0.0
    median_duration_seconds: float = 0.0
    average_stability_days: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReconciliationMetricsService:
    """Job-level metrics with pattern detection."""

    def __init__(
        self,
        registry: MetricsRegistry,
        alert_manager: AlertManager,
        *,
        retention_days: int = 90,
        clock: Clock = utc_now,
    ):
        self._alerts = alert_manager
        self._clock = clock
        self._retention = timedelta(days=retention_days)
        self._jobs: dict[str, JobDurationMetric] = {}
        self._alerted_patterns: set[str] = set()
        self._last_cleanup = clock()

        self.jobs_started = registry.counter(
            "recon_jobs_started_total", "Reconciliation jobs started", ["triggered_by"]
        )
        self.jobs_finished = registry.counter(
            "recon_jobs_finished_total", "Reconciliation jobs finished", ["status"]
        )
        self.extensions = registry.counter(
            "recon_job_extensions_total", "Reconciliation extensions granted"
        )
        self.extension_days = registry.histogram(
            "recon_job_extension_days", "Days granted per extension", buckets=(1, 2, 3, 5, 10)
        )
        self.duration = registry.histogram(
            "recon_job_duration_seconds",
            "Wall-clock duration of finished jobs",
            ["status"],
            buckets=(3600, 86400, 3 * 86400, 7 * 86400, 15 * 86400, 30 * 86400),
        )
        self.active_jobs = registry.gauge("recon_active_jobs", "Jobs currently active")
        self.cycle_failures = registry.counter(
            "recon_cycle_failures_total", "Monitoring cycles that raised"
        )

    # ── Recording ────────────────────────────────────────────────

    def record_job_start(self, job: ReconciliationJob) -> None:
        self._jobs[job.id] = JobDurationMetric(
            job_id=job.id,
            district_id=job.district_id,
            target_month=job.target_month,
            start_time=job.start_date,
            status=JobStatus.ACTIVE,
            max_reconciliation_days=job.config.max_reconciliation_days,
        )
        self.jobs_started.labels(triggered_by=job.triggered_by.value).inc()
        self._refresh_active_gauge()
        logger.debug("metrics.job_started", job_id=job.id)

    def record_job_completion(self, job: ReconciliationJob, stability_days: int) -> None:
        """Record a job leaving ``active`` (completed or cancelled)."""
        metric = self._ensure(job)
        self._finish(metric, job, job.status)
        metric.final_stability_days = stability_days
        logger.debug(
            "metrics.job_completed",
            job_id=job.id,
            status=job.status.value,
            stability_days=stability_days,
        )

    def record_job_extension(self, job_id: str, extension_days: int) -> None:
        metric = self._jobs.get(job_id)
        if metric is None:
            logger.warning("metrics.extension_for_unknown_job", job_id=job_id)
            return
        metric.was_extended = True
        metric.extension_count += 1
        metric.extension_days += extension_days
        self.extensions.inc()
        self.extension_days.observe(extension_days)

    async def record_job_failure(self, job: ReconciliationJob, error: str) -> None:
        """Record a failure, alert on it, and check for failure patterns.

        The job record is only finished when the job itself has failed; a
        failed cycle on an active job leaves it active.
        """
        metric = self._ensure(job)
        metric.error = error
        metric.failure_count += 1
        metric.last_failure_time = self._clock()
        if job.status == JobStatus.FAILED and metric.status != JobStatus.FAILED:
            self._finish(metric, job, JobStatus.FAILED)
            logger.warning("metrics.job_failed", job_id=job.id, error=error)
        else:
            self.cycle_failures.inc()
            logger.warning("metrics.cycle_failed", job_id=job.id, error=error)

        await self._alerts.send_reconciliation_failure_alert(
            job.district_id, job.target_month, error, job.id
        )
        await self._alert_on_new_patterns()

    def _ensure(self, job: ReconciliationJob) -> JobDurationMetric:
        metric = self._jobs.get(job.id)
        if metric is None:
            self.record_job_start(job)
            metric = self._jobs[job.id]
        return metric

    def _finish(self, metric: JobDurationMetric, job: ReconciliationJob, status: JobStatus) -> None:
        end = job.end_date or self._clock()
        metric.status = status
        metric.end_time = end
        metric.duration_seconds = max(0.0, (end - metric.start_time).total_seconds())
        self.jobs_finished.labels(status=status.value).inc()
        self.duration.labels(status=status.value).observe(metric.duration_seconds)
        self._refresh_active_gauge()

    def _refresh_active_gauge(self) -> None:
        self.active_jobs.set(sum(1 for m in self._jobs.values() if m.status == JobStatus.ACTIVE))

    # ── Queries ──────────────────────────────────────────────────

    def get_job_duration_metrics(self) -> list[JobDurationMetric]:
        return list(self._jobs.values())

    def _summarize(self, metrics: list[JobDurationMetric]) -> ReconciliationMetricsSummary:
        summary = ReconciliationMetricsSummary(total_jobs=len(metrics))
        if not metrics:
            return summary

        durations = []
        stability = []
        for m in metrics:
            match m.status:
                case JobStatus.ACTIVE:
                    summary.active_jobs += 1
                case JobStatus.COMPLETED:
                    summary.successful_jobs += 1
                case JobStatus.FAILED:
                    summary.failed_jobs += 1
                case JobStatus.CANCELLED:
                    summary.cancelled_jobs += 1
            if m.was_extended:
                summary.extended_jobs += 1
            if m.failure_count and m.status != JobStatus.FAILED:
                summary.jobs_with_cycle_failures += 1
                summary.cycle_failures += m.failure_count
            if m.duration_seconds is not None:
                durations.append(m.duration_seconds)
            if m.status == JobStatus.COMPLETED:
                stability.append(m.final_stability_days)

        total = summary.total_jobs
        summary.success_rate = summary.successful_jobs / total * 100
        summary.failure_rate = summary.failed_jobs / total * 100
        summary.extension_rate = summary.extended_jobs / total * 100
        if durations:
            summary.average_duration_seconds = statistics.fmean(durations)
            summary.median_duration_seconds = statistics.median(durations)
        if stability:
            summary.average_stability_days = statistics.fmean(stability)
        return summary

    def get_metrics(self) -> ReconciliationMetricsSummary:
        return self._summarize(list(self._jobs.values()))

    def get_district_metrics(self, district_id: str) -> ReconciliationMetricsSummary:
        return self._summarize([m for m in self._jobs.values() if m.district_id == district_id])

    def get_performance_patterns(self) -> list[PerformancePattern]:
        now = self._clock()
        patterns: list[PerformancePattern] = []
        failed = [m for m in self._jobs.values() if m.status == JobStatus.FAILED]

        recent_failures = [
            m
            for m in self._jobs.values()
            if m.last_failure_time is not None
            and now - m.last_failure_time <= FREQUENT_FAILURE_WINDOW
        ]
        if len(recent_failures) >= FREQUENT_FAILURE_THRESHOLD:
            patterns.append(PerformancePattern(
                pattern="frequent_failures",
                severity="high",
                description=f"{len(recent_failures)} reconciliation failures in the last 7 days",
                affected_jobs=[m.job_id for m in recent_failures],
                detected_at=now,
            ))

        repeatedly_extended = [m for m in self._jobs.values() if m.extension_count >= 2]
        if len(repeatedly_extended) >= EXTENDED_JOB_THRESHOLD:
            patterns.append(PerformancePattern(
                pattern="extended",
                severity="medium",
                description=f"{len(repeatedly_extended)} reconciliations required multiple extensions",
                affected_jobs=[m.job_id for m in repeatedly_extended],
                detected_at=now,
            ))

        timed_out = [
            m
            for m in failed
            if m.duration_seconds is not None
            and m.duration_seconds > m.max_reconciliation_days * 86400
        ]
        if len(timed_out) >= TIMEOUT_JOB_THRESHOLD:
            patterns.append(PerformancePattern(
                pattern="timeout",
                severity="high",
                description=f"{len(timed_out)} reconciliations failed after exceeding their window",
                affected_jobs=[m.job_id for m in timed_out],
                detected_at=now,
            ))

        return patterns

    async def _alert_on_new_patterns(self) -> None:
        for pattern in self.get_performance_patterns():
            if pattern.severity != "high" or pattern.pattern in self._alerted_patterns:
                continue
            self._alerted_patterns.add(pattern.pattern)
            await self._alerts.send_alert(
                AlertSeverity.HIGH,
                AlertCategory.RECONCILIATION,
                f"Performance Pattern Detected: {pattern.pattern}",
                pattern.description,
                {"pattern": pattern.pattern, "affected_jobs": pattern.affected_jobs},
            )

    # ── Maintenance ──────────────────────────────────────────────

    def cleanup_old_metrics(self) -> int:
        """Drop finished-job records older than the retention period."""
        now = self._clock()
        cutoff = now - self._retention
        stale = [
            job_id
            for job_id, m in self._jobs.items()
            if m.status != JobStatus.ACTIVE and (m.end_time or m.start_time) < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
        self._last_cleanup = now
        if stale:
            logger.info("metrics.cleanup", removed=len(stale))
        return len(stale)

    def get_health_status(self) -> dict[str, Any]:
        summary = self.get_metrics()
        patterns = self.get_performance_patterns()
        return {
            "is_healthy": not any(p.severity == "high" for p in patterns)
            and summary.failure_rate < 50,
            "total_jobs": summary.total_jobs,
            "active_jobs": summary.active_jobs,
            "failure_rate": summary.failure_rate,
            "performance_patterns": len(patterns),
            "last_cleanup": self._last_cleanup,
        }

    def reset_metrics(self) -> None:
        self._jobs.clear()
        self._alerted_patterns.clear()
        self._refresh_active_gauge()


__all__ = [
    "JobDurationMetric",
    "PerformancePattern",
    "ReconciliationMetricsSummary",
    "ReconciliationMetricsService",
]
