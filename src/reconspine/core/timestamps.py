"""
Time helpers.

All reconciliation arithmetic runs on timezone-aware UTC datetimes. The
orchestrator takes a ``Clock`` (any zero-argument callable returning a
datetime) so day counting is deterministic under test.
"""

from __future__ import annotations

import calendar
import re
from datetime import UTC, datetime, timedelta
from typing import Callable

Clock = Callable[[], datetime]

DAY = timedelta(days=1)

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def whole_days(delta: timedelta) -> int:
    """Floor a duration to whole days."""
    return delta // DAY


def month_end_date(target_month: str) -> str:
    """
    Last calendar day of a ``YYYY-MM`` period as ``YYYY-MM-DD``.

    >>> month_end_date("2024-02")
    '2024-02-29'
    """
    match = _MONTH_RE.match(target_month)
    if match is None:
        raise ValueError(f"Invalid target month: {target_month!r} (expected YYYY-MM)")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid target month: {target_month!r} (month out of range)")
    last_day = calendar.monthrange(year, month)[1]
    return f"{year:04d}-{month:02d}-{last_day:02d}"


class FrozenClock:
    """
    Manually advanced clock.

    Example:
        clock = FrozenClock(datetime(2024, 2, 1, tzinfo=UTC))
        clock.advance(days=1)
    """

    def __init__(self, start: datetime):
        self._now = start

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


__all__ = [
    "Clock",
    "DAY",
    "utc_now",
    "to_iso8601",
    "from_iso8601",
    "whole_days",
    "month_end_date",
    "FrozenClock",
]
