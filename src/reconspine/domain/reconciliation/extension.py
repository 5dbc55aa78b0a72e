"""
Automatic extension policy.

When a significant change lands close to a job's deadline the monitoring
window is pushed out, so late revisions still get a stability period before
the month is frozen. A burst of late changes earns a longer extension than a
single one, bounded by the job's remaining extension allowance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from reconspine.core.timestamps import DAY, whole_days
from reconspine.domain.reconciliation.models import (
    ExtensionInfo,
    ReconciliationJob,
    ReconciliationTimeline,
)

EXTENSION_PROXIMITY_DAYS = 2
RECENT_CHANGE_WINDOW_DAYS = 2
DEFAULT_EXTENSION_DAYS = 3


@dataclass(frozen=True)
class ExtensionDecision:
    should_extend: bool
    extension_days: int = 0
    reason: str = ""


def original_max_end_date(job: ReconciliationJob) -> datetime:
    return job.start_date + timedelta(days=job.config.max_reconciliation_days)


def calculate_current_extension_days(job: ReconciliationJob) -> int:
    """Whole days already added to the job's original deadline."""
    return max(0, whole_days(job.max_end_date - original_max_end_date(job)))


def should_extend_reconciliation(
    job: ReconciliationJob, timeline: ReconciliationTimeline, now: datetime
) -> ExtensionDecision:
    """Decide whether a just-observed significant change warrants an extension."""
    config = job.config
    if not config.auto_extension_enabled:
        return ExtensionDecision(False, reason="Auto-extension disabled")

    days_until_max_end = (job.max_end_date - now) / DAY
    if days_until_max_end > EXTENSION_PROXIMITY_DAYS:
        return ExtensionDecision(False, reason="Not close to max end date")

    recent = [
        e for e in timeline.entries if (now - e.date) / DAY <= RECENT_CHANGE_WINDOW_DAYS
    ]
    significant_count = sum(1 for e in recent if e.is_significant)
    if significant_count == 0:
        return ExtensionDecision(False, reason="No recent significant changes")

    current = calculate_current_extension_days(job)
    if current >= config.max_extension_days:
        return ExtensionDecision(
            False,
            reason=(
                f"Maximum extension limit of {config.max_extension_days} days already reached"
            ),
        )

    remaining = config.max_extension_days - current
    days = max(1, min(max(DEFAULT_EXTENSION_DAYS, significant_count), remaining))
    return ExtensionDecision(
        True,
        extension_days=days,
        reason=(
            f"Recent significant changes detected ({significant_count} changes in last "
            f"{RECENT_CHANGE_WINDOW_DAYS} days)"
        ),
    )


def build_extension_info(job: ReconciliationJob) -> ExtensionInfo:
    """Informational headroom view; ``can_extend`` requires remaining days."""
    current = calculate_current_extension_days(job)
    remaining = max(0, job.config.max_extension_days - current)
    return ExtensionInfo(
        current_extension_days=current,
        max_extension_days=job.config.max_extension_days,
        remaining_extension_days=remaining,
        can_extend=job.is_active and remaining > 0,
        auto_extension_enabled=job.config.auto_extension_enabled,
    )


__all__ = [
    "ExtensionDecision",
    "original_max_end_date",
    "calculate_current_extension_days",
    "should_extend_reconciliation",
    "build_extension_info",
]
