"""
Status calculation for reconciliation jobs.

Pure functions over ``(job, timeline, now)``. Nothing here touches storage
or the clock; callers pass ``now`` explicitly.

Phase derivation for an active job, first match wins:

1. ``now > max_end_date``              -> finalizing (forced)
2. ``days_stable >= stability window``  -> finalizing
3. ``days_stable > 0``                 -> stabilizing
4. otherwise                           -> monitoring
"""

from __future__ import annotations

from datetime import datetime, timedelta

from reconspine.core.timestamps import whole_days
from reconspine.domain.reconciliation.models import (
    JobStatus,
    ReconciliationJob,
    ReconciliationPhase,
    ReconciliationStatus,
    ReconciliationTimeline,
)

MSG_FORCED_FINALIZATION = "Maximum reconciliation period reached - finalizing with current data"
MSG_MONITORING = "Monitoring for changes"
MSG_STARTED = "Reconciliation started - monitoring for changes"
MSG_CANCELLED_BY_USER = "Reconciliation cancelled by user"
MSG_FINALIZED = "Reconciliation completed - data finalized"


def calculate_days_active(job: ReconciliationJob, now: datetime) -> int:
    """Whole days between start and end (or now, while running)."""
    return whole_days((job.end_date or now) - job.start_date)


def calculate_days_stable(timeline: ReconciliationTimeline) -> int:
    """
    Length of the run of non-significant entries ending at the latest entry.

    Entries are ordered by observation date, newest first, before counting;
    storage order does not matter.
    """
    count = 0
    for entry in sorted(timeline.entries, key=lambda e: e.date, reverse=True):
        if entry.is_significant:
            break
        count += 1
    return count


def has_stability_period_been_met(
    job: ReconciliationJob, timeline: ReconciliationTimeline, now: datetime
) -> bool:
    """True once the deadline passed or the data stayed quiet long enough."""
    if now > job.max_end_date:
        return True
    return calculate_days_stable(timeline) >= job.config.stability_period_days


def next_check_date(job: ReconciliationJob, now: datetime) -> datetime:
    return now + timedelta(hours=job.config.check_frequency_hours)


def calculate_reconciliation_status(
    job: ReconciliationJob, timeline: ReconciliationTimeline, now: datetime
) -> ReconciliationStatus:
    """Status of an active job."""
    days_active = calculate_days_active(job, now)
    days_stable = calculate_days_stable(timeline)
    window = job.config.stability_period_days

    if now > job.max_end_date:
        return ReconciliationStatus(
            phase=ReconciliationPhase.FINALIZING,
            days_active=days_active,
            days_stable=days_stable,
            message=MSG_FORCED_FINALIZATION,
        )

    if days_stable >= window:
        return ReconciliationStatus(
            phase=ReconciliationPhase.FINALIZING,
            days_active=days_active,
            days_stable=days_stable,
            message=f"Stability period met ({days_stable} days) - ready for finalization",
        )

    if days_stable > 0:
        return ReconciliationStatus(
            phase=ReconciliationPhase.STABILIZING,
            days_active=days_active,
            days_stable=days_stable,
            next_check_date=next_check_date(job, now),
            message=f"Stabilizing - {days_stable}/{window} stable days",
        )

    return ReconciliationStatus(
        phase=ReconciliationPhase.MONITORING,
        days_active=days_active,
        days_stable=days_stable,
        next_check_date=next_check_date(job, now),
        message=MSG_MONITORING,
    )


def get_job_status(job: ReconciliationJob, now: datetime) -> ReconciliationStatus:
    """
    Status reported for a job without recomputing stability.

    Terminal jobs map straight to a terminal phase with ``days_stable=0``;
    cancelled jobs report phase ``failed``.
    """
    days_active = calculate_days_active(job, now)

    match job.status:
        case JobStatus.COMPLETED:
            return ReconciliationStatus(
                ReconciliationPhase.COMPLETED, days_active, 0, "Reconciliation completed"
            )
        case JobStatus.FAILED:
            return ReconciliationStatus(
                ReconciliationPhase.FAILED, days_active, 0, "Reconciliation failed"
            )
        case JobStatus.CANCELLED:
            return ReconciliationStatus(
                ReconciliationPhase.FAILED, days_active, 0, "Reconciliation cancelled"
            )
        case _:
            return ReconciliationStatus(
                phase=ReconciliationPhase.MONITORING,
                days_active=days_active,
                days_stable=0,
                next_check_date=next_check_date(job, now),
                message=MSG_MONITORING,
            )


__all__ = [
    "calculate_days_active",
    "calculate_days_stable",
    "has_stability_period_been_met",
    "next_check_date",
    "calculate_reconciliation_status",
    "get_job_status",
]
