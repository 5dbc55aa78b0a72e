"""
Downstream snapshot propagation.

:class:`SnapshotCacheUpdater` writes a district's latest statistics into the
:class:`~reconspine.core.cache.CacheBackend` that readers of district data
consume, keyed by district and month-end date. Before overwriting it backs
up the existing entry; if the write cannot be verified the backup is
restored. Failures come back in the :class:`CacheUpdateResult` instead of
being raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from reconspine.core.cache import CacheBackend
from reconspine.core.logging import get_logger
from reconspine.core.timestamps import Clock, to_iso8601, utc_now
from reconspine.domain.reconciliation.models import (
    CacheUpdateResult,
    DataChanges,
    DistrictStatistics,
)

logger = get_logger(__name__)

BACKUP_SUFFIX = "-backup"


def snapshot_key(district_id: str, date: str) -> str:
    return f"district:{district_id}:{date}"


@dataclass
class CacheConsistencyCheck:
    consistent: bool
    issues: list[str] = field(default_factory=list)
    last_update_date: str | None = None


class SnapshotCacheUpdater:
    """Backup, write, verify and roll back a district snapshot."""

    def __init__(self, backend: CacheBackend, *, clock: Clock = utc_now):
        self._backend = backend
        self._clock = clock

    def _backup(self, key: str) -> bool:
        existing = self._backend.get(key)
        if existing is None:
            return False
        self._backend.set(key + BACKUP_SUFFIX, existing, ttl_seconds=None)
        return True

    def _rollback(self, key: str, backup_created: bool) -> None:
        if backup_created:
            self._backend.set(key, self._backend.get(key + BACKUP_SUFFIX), ttl_seconds=None)
        else:
            self._backend.delete(key)

    async def update_cache_immediately(
        self,
        district_id: str,
        date: str,
        data: DistrictStatistics,
        changes: DataChanges,
    ) -> CacheUpdateResult:
        if not changes.has_changes:
            logger.debug("cache_update.skipped", district_id=district_id, date=date)
            return CacheUpdateResult(success=True, updated=False)

        key = snapshot_key(district_id, date)
        try:
            backup_created = self._backup(key)
        except Exception as e:
            logger.error("cache_update.backup_failed", district_id=district_id, error=str(e))
            return CacheUpdateResult(success=False, error=str(e))

        result = CacheUpdateResult(
            success=False, backup_created=backup_created, rollback_available=backup_created
        )
        entry = {
            **data.to_dict(),
            "date": date,
            "fetched_at": to_iso8601(self._clock()),
            "source_data_date": changes.source_data_date,
        }
        try:
            self._backend.set(key, entry, ttl_seconds=None)
            stored = self._backend.get(key)
            if stored is None:
                raise LookupError("Cache entry not found after update")
            if stored.get("district_id") != district_id:
                raise ValueError("Cache entry has invalid structure")
        except Exception as e:
            logger.error("cache_update.failed", district_id=district_id, date=date, error=str(e))
            result.error = str(e)
            try:
                self._rollback(key, backup_created)
                logger.info("cache_update.rolled_back", district_id=district_id, date=date)
            except Exception as rollback_error:
                logger.error(
                    "cache_update.rollback_failed",
                    district_id=district_id,
                    date=date,
                    error=str(rollback_error),
                )
            return result

        result.success = True
        result.updated = True
        logger.info(
            "cache_update.completed",
            district_id=district_id,
            date=date,
            source_data_date=changes.source_data_date,
            backup_created=backup_created,
        )
        return result

    def check_cache_consistency(
        self, district_id: str, date: str, expected: DistrictStatistics | None = None
    ) -> CacheConsistencyCheck:
        entry: dict[str, Any] | None = self._backend.get(snapshot_key(district_id, date))
        if entry is None:
            return CacheConsistencyCheck(False, ["Cache entry does not exist"])

        issues = [
            f"Missing {name}" for name in ("district_id", "date", "fetched_at") if not entry.get(name)
        ]
        if expected is not None:
            for name in ("membership_total", "clubs_total", "clubs_distinguished"):
                if entry.get(name) != getattr(expected, name):
                    issues.append(f"{name} mismatch")
        return CacheConsistencyCheck(not issues, issues, entry.get("fetched_at"))


__all__ = ["SnapshotCacheUpdater", "CacheConsistencyCheck", "snapshot_key", "BACKUP_SUFFIX"]
