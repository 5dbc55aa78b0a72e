"""
Reference change detector.

Compares two :class:`DistrictStatistics` snapshots on three axes:

    membership      percent change of ``membership_total``
    club count      absolute change of ``clubs_total``
    distinguished   percent change of ``clubs_distinguished``

A change is significant when any magnitude reaches its threshold
(``abs(delta) >= threshold``). Percent change from a zero baseline is
reported as 100% when the new value is non-zero.
"""

from __future__ import annotations

from reconspine.core.logging import get_logger
from reconspine.core.timestamps import Clock, utc_now
from reconspine.domain.reconciliation.models import (
    ClubCountChange,
    DataChanges,
    DistinguishedChange,
    DistrictStatistics,
    MembershipChange,
    SignificantChangeThresholds,
)

logger = get_logger(__name__)


def percent_change(previous: int, current: int) -> float:
    if previous == current:
        return 0.0
    if previous == 0:
        return 100.0
    return round((current - previous) / previous * 100, 4)


class ChangeDetectionEngine:
    """Stateless snapshot differ."""

    def __init__(self, *, clock: Clock = utc_now):
        self._clock = clock

    def detect_changes(
        self,
        district_id: str,
        before: DistrictStatistics,
        after: DistrictStatistics,
    ) -> DataChanges:
        changed_fields: list[str] = []
        membership = clubs = distinguished = None

        if before.membership_total != after.membership_total:
            changed_fields.append("membership")
            membership = MembershipChange(
                previous=before.membership_total,
                current=after.membership_total,
                percent_change=percent_change(before.membership_total, after.membership_total),
            )

        if before.clubs_total != after.clubs_total:
            changed_fields.append("club_count")
            clubs = ClubCountChange(
                previous=before.clubs_total,
                current=after.clubs_total,
                absolute_change=after.clubs_total - before.clubs_total,
            )

        if before.clubs_distinguished != after.clubs_distinguished:
            changed_fields.append("distinguished")
            distinguished = DistinguishedChange(
                previous=before.clubs_distinguished,
                current=after.clubs_distinguished,
                percent_change=percent_change(
                    before.clubs_distinguished, after.clubs_distinguished
                ),
            )

        changes = DataChanges(
            has_changes=bool(changed_fields),
            changed_fields=changed_fields,
            timestamp=self._clock(),
            source_data_date=after.as_of_date,
            membership_change=membership,
            club_count_change=clubs,
            distinguished_change=distinguished,
        )
        logger.debug(
            "change_detection.completed",
            district_id=district_id,
            changed_fields=changed_fields,
        )
        return changes

    def is_significant_change(
        self, changes: DataChanges, thresholds: SignificantChangeThresholds
    ) -> bool:
        if not changes.has_changes:
            return False
        if (
            changes.membership_change
            and abs(changes.membership_change.percent_change) >= thresholds.membership_percent
        ):
            return True
        if (
            changes.club_count_change
            and abs(changes.club_count_change.absolute_change) >= thresholds.club_count_absolute
        ):
            return True
        if (
            changes.distinguished_change
            and abs(changes.distinguished_change.percent_change)
            >= thresholds.distinguished_percent
        ):
            return True
        return False


__all__ = ["ChangeDetectionEngine", "percent_change"]
