"""
Durable storage for reconciliation jobs and timelines.

Two implementations of :class:`~reconspine.domain.reconciliation.contracts.ReconciliationStorage`:

- :class:`FileReconciliationStorage` keeps one JSON document per job and per
  timeline under a storage directory, plus an ``index.json`` that maps
  districts, months and statuses to job ids.
- :class:`InMemoryReconciliationStorage` keeps serialized dicts in process,
  for tests and the ``memory`` storage backend.

Layout on disk::

    <storage_dir>/
        schema.json          {"version": 1, ...}
        index.json           jobs / by_district / by_month / by_status
        config.json          persisted global policy
        jobs/<job_id>.json
        timelines/<job_id>.json

Writes are write-behind: ``save_job`` and ``save_timeline`` stage documents
in memory and ``flush()`` drains them to disk. Staged documents are visible
to reads immediately, and the buffer drains on its own once ``batch_size``
documents are pending.

Job ids become file names, so they must match ``^[A-Za-z0-9_-]+$``.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from reconspine.core.errors import StorageError, ValidationError
from reconspine.core.logging import get_logger
from reconspine.core.timestamps import Clock, to_iso8601, utc_now
from reconspine.domain.reconciliation.models import (
    JobStatus,
    ReconciliationConfig,
    ReconciliationJob,
    ReconciliationTimeline,
)

logger = get_logger(__name__)

SCHEMA_VERSION = 1
JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _newest_first(jobs: list[ReconciliationJob]) -> list[ReconciliationJob]:
    return sorted(jobs, key=lambda j: j.metadata.created_at, reverse=True)


def _is_expired(job: ReconciliationJob, cutoff: datetime) -> bool:
    if job.is_active:
        return False
    finished = job.end_date or job.metadata.updated_at
    return finished < cutoff


def _empty_index() -> dict[str, Any]:
    return {"jobs": {}, "by_district": {}, "by_month": {}, "by_status": {}, "last_updated": None}


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None


class FileReconciliationStorage:
    """
    JSON-file job/timeline store with a write-behind buffer.

    Example:
        storage = FileReconciliationStorage("data/reconciliation")
        await storage.init()
        await storage.save_job(job)
        await storage.flush()
    """

    def __init__(
        self,
        storage_dir: str | Path,
        *,
        batch_size: int = 10,
        default_config: ReconciliationConfig | None = None,
        clock: Clock = utc_now,
    ):
        self.storage_dir = Path(storage_dir)
        self.jobs_dir = self.storage_dir / "jobs"
        self.timelines_dir = self.storage_dir / "timelines"
        self.index_file = self.storage_dir / "index.json"
        self.config_file = self.storage_dir / "config.json"
        self.schema_file = self.storage_dir / "schema.json"
        self.batch_size = batch_size
        self._default_config = default_config or ReconciliationConfig()
        self._clock = clock

        self._index: dict[str, Any] | None = None
        self._pending_jobs: dict[str, dict[str, Any]] = {}
        self._pending_timelines: dict[str, dict[str, Any]] = {}
        self._index_dirty = False
        self._flush_lock = asyncio.Lock()

    # ── Setup ────────────────────────────────────────────────────

    async def init(self) -> None:
        """Create directories, schema marker, index and default config if missing."""
        if self._index is not None:
            return
        try:
            self._index = await asyncio.to_thread(self._init_sync)
        except OSError as e:
            raise StorageError(f"Failed to initialize reconciliation storage: {e}", cause=e) from e
        logger.info("storage.initialized", storage_dir=str(self.storage_dir))

    def _init_sync(self) -> dict[str, Any]:
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.timelines_dir.mkdir(parents=True, exist_ok=True)

        schema = _read_json(self.schema_file)
        if schema is None:
            now = to_iso8601(self._clock())
            _write_json(
                self.schema_file,
                {"version": SCHEMA_VERSION, "created_at": now, "last_migration": now},
            )
        elif schema.get("version") != SCHEMA_VERSION:
            logger.warning(
                "storage.schema_version_mismatch",
                found=schema.get("version"),
                expected=SCHEMA_VERSION,
            )

        if not self.config_file.exists():
            _write_json(self.config_file, self._default_config.to_dict())

        index = _read_json(self.index_file)
        if index is None:
            index = _empty_index()
            _write_json(self.index_file, index)
        return index

    async def _ensure_index(self) -> dict[str, Any]:
        if self._index is None:
            await self.init()
        return self._index

    def _job_scoped_path(self, base_dir: Path, job_id: str) -> Path:
        if not JOB_ID_PATTERN.match(job_id or ""):
            raise ValidationError("Invalid job ID format", field="job_id", value=job_id)
        path = (base_dir / f"{job_id}.json").resolve()
        if path.parent != base_dir.resolve():
            raise ValidationError(
                "Resolved path is outside of the storage directory", field="job_id", value=job_id
            )
        return path

    # ── Index ────────────────────────────────────────────────────

    def _index_job(self, index: dict[str, Any], job: ReconciliationJob) -> None:
        previous = index["jobs"].get(job.id)
        if previous and previous["status"] != job.status.value:
            ids = index["by_status"].get(previous["status"], [])
            if job.id in ids:
                ids.remove(job.id)

        index["jobs"][job.id] = {
            "district_id": job.district_id,
            "target_month": job.target_month,
            "status": job.status.value,
            "created_at": to_iso8601(job.metadata.created_at),
            "updated_at": to_iso8601(job.metadata.updated_at),
        }
        for bucket, key in (
            ("by_district", job.district_id),
            ("by_month", job.target_month),
            ("by_status", job.status.value),
        ):
            ids = index[bucket].setdefault(key, [])
            if job.id not in ids:
                ids.append(job.id)
        index["last_updated"] = to_iso8601(self._clock())
        self._index_dirty = True

    def _unindex_job(self, index: dict[str, Any], job_id: str) -> None:
        entry = index["jobs"].pop(job_id, None)
        if entry is None:
            return
        for bucket, key in (
            ("by_district", entry["district_id"]),
            ("by_month", entry["target_month"]),
            ("by_status", entry["status"]),
        ):
            ids = index[bucket].get(key, [])
            if job_id in ids:
                ids.remove(job_id)
            if not ids:
                index[bucket].pop(key, None)
        index["last_updated"] = to_iso8601(self._clock())
        self._index_dirty = True

    # ── Jobs ─────────────────────────────────────────────────────

    async def save_job(self, job: ReconciliationJob) -> None:
        index = await self._ensure_index()
        self._job_scoped_path(self.jobs_dir, job.id)
        self._pending_jobs[job.id] = job.to_dict()
        self._index_job(index, job)
        logger.debug("storage.job_staged", job_id=job.id, status=job.status.value)
        await self._maybe_flush()

    async def get_job(self, job_id: str) -> ReconciliationJob | None:
        await self._ensure_index()
        if job_id in self._pending_jobs:
            return ReconciliationJob.from_dict(self._pending_jobs[job_id])
        path = self._job_scoped_path(self.jobs_dir, job_id)
        data = await self._read(path)
        return ReconciliationJob.from_dict(data) if data else None

    async def get_jobs_bulk(self, job_ids: list[str]) -> dict[str, ReconciliationJob]:
        jobs = {}
        for job_id in job_ids:
            job = await self.get_job(job_id)
            if job is not None:
                jobs[job_id] = job
        return jobs

    async def _load_many(self, job_ids: list[str]) -> list[ReconciliationJob]:
        return _newest_first(list((await self.get_jobs_bulk(list(job_ids))).values()))

    async def get_all_jobs(self) -> list[ReconciliationJob]:
        index = await self._ensure_index()
        return await self._load_many(list(index["jobs"]))

    async def get_jobs_by_district(self, district_id: str) -> list[ReconciliationJob]:
        index = await self._ensure_index()
        return await self._load_many(index["by_district"].get(district_id, []))

    async def get_jobs_by_status(self, status: JobStatus) -> list[ReconciliationJob]:
        index = await self._ensure_index()
        return await self._load_many(index["by_status"].get(JobStatus(status).value, []))

    async def get_jobs_by_month(self, target_month: str) -> list[ReconciliationJob]:
        index = await self._ensure_index()
        return await self._load_many(index["by_month"].get(target_month, []))

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job and its timeline. Returns ``False`` if the job is unknown."""
        index = await self._ensure_index()
        job_path = self._job_scoped_path(self.jobs_dir, job_id)
        timeline_path = self._job_scoped_path(self.timelines_dir, job_id)
        if job_id not in index["jobs"] and job_id not in self._pending_jobs:
            return False

        self._pending_jobs.pop(job_id, None)
        self._pending_timelines.pop(job_id, None)
        self._unindex_job(index, job_id)
        await asyncio.to_thread(job_path.unlink, missing_ok=True)
        await asyncio.to_thread(timeline_path.unlink, missing_ok=True)
        await self.flush()
        logger.info("storage.job_deleted", job_id=job_id)
        return True

    async def cleanup_old_jobs(self, retention_days: int) -> int:
        """Delete finished jobs older than ``retention_days``. Active jobs are kept."""
        cutoff = self._clock() - timedelta(days=retention_days)
        removed = 0
        for job in await self.get_all_jobs():
            if _is_expired(job, cutoff) and await self.delete_job(job.id):
                removed += 1
        if removed:
            logger.info("storage.cleanup_completed", removed=removed, retention_days=retention_days)
        return removed

    # ── Timelines ────────────────────────────────────────────────

    async def save_timeline(self, timeline: ReconciliationTimeline) -> None:
        await self._ensure_index()
        self._job_scoped_path(self.timelines_dir, timeline.job_id)
        self._pending_timelines[timeline.job_id] = timeline.to_dict()
        await self._maybe_flush()

    async def get_timeline(self, job_id: str) -> ReconciliationTimeline | None:
        await self._ensure_index()
        if job_id in self._pending_timelines:
            return ReconciliationTimeline.from_dict(self._pending_timelines[job_id])
        path = self._job_scoped_path(self.timelines_dir, job_id)
        data = await self._read(path)
        return ReconciliationTimeline.from_dict(data) if data else None

    # ── Config ───────────────────────────────────────────────────

    async def get_config(self) -> ReconciliationConfig | None:
        await self._ensure_index()
        data = await self._read(self.config_file)
        return ReconciliationConfig.from_dict(data) if data else None

    async def save_config(self, config: ReconciliationConfig) -> None:
        await self._ensure_index()
        try:
            await asyncio.to_thread(_write_json, self.config_file, config.to_dict())
        except OSError as e:
            raise StorageError(f"Failed to save reconciliation config: {e}", cause=e) from e

    # ── Write-behind ─────────────────────────────────────────────

    @property
    def pending_writes(self) -> int:
        return len(self._pending_jobs) + len(self._pending_timelines)

    async def _maybe_flush(self) -> None:
        if self.pending_writes >= self.batch_size:
            await self.flush()

    async def flush(self) -> None:
        """Write every staged document and the index to disk."""
        async with self._flush_lock:
            index = await self._ensure_index()
            jobs, self._pending_jobs = self._pending_jobs, {}
            timelines, self._pending_timelines = self._pending_timelines, {}
            dirty, self._index_dirty = self._index_dirty, False
            if not (jobs or timelines or dirty):
                return
            try:
                await asyncio.to_thread(self._flush_sync, jobs, timelines, index if dirty else None)
            except OSError as e:
                # Put staged documents back so a retry can write them
                self._pending_jobs = {**jobs, **self._pending_jobs}
                self._pending_timelines = {**timelines, **self._pending_timelines}
                self._index_dirty = self._index_dirty or dirty
                raise StorageError(f"Failed to flush reconciliation storage: {e}", cause=e) from e
            logger.debug("storage.flushed", jobs=len(jobs), timelines=len(timelines))

    def _flush_sync(
        self,
        jobs: dict[str, dict[str, Any]],
        timelines: dict[str, dict[str, Any]],
        index: dict[str, Any] | None,
    ) -> None:
        for job_id, payload in jobs.items():
            _write_json(self._job_scoped_path(self.jobs_dir, job_id), payload)
        for job_id, payload in timelines.items():
            _write_json(self._job_scoped_path(self.timelines_dir, job_id), payload)
        if index is not None:
            _write_json(self.index_file, index)

    async def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(_read_json, path)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path.name}: {e}", cause=e) from e

    # ── Maintenance ──────────────────────────────────────────────

    async def get_storage_stats(self) -> dict[str, Any]:
        index = await self._ensure_index()

        def _dir_size(directory: Path) -> int:
            if not directory.exists():
                return 0
            return sum(p.stat().st_size for p in directory.iterdir() if p.is_file())

        size = await asyncio.to_thread(
            lambda: _dir_size(self.jobs_dir) + _dir_size(self.timelines_dir)
        )
        return {
            "total_jobs": len(index["jobs"]),
            "jobs_by_status": {k: len(v) for k, v in index["by_status"].items()},
            "jobs_by_district": {k: len(v) for k, v in index["by_district"].items()},
            "storage_size_bytes": size,
            "pending_writes": self.pending_writes,
            "last_updated": index["last_updated"],
        }

    async def clear_all(self) -> None:
        """Remove every job and timeline and reset the index."""
        await self._ensure_index()
        self._pending_jobs.clear()
        self._pending_timelines.clear()

        def _clear() -> None:
            for directory in (self.jobs_dir, self.timelines_dir):
                for path in directory.glob("*.json"):
                    path.unlink(missing_ok=True)
            _write_json(self.index_file, _empty_index())

        await asyncio.to_thread(_clear)
        self._index = _empty_index()
        self._index_dirty = False
        logger.info("storage.cleared", storage_dir=str(self.storage_dir))


class InMemoryReconciliationStorage:
    """
    Process-local storage with the same contract as the file store.

    Documents are held as serialized dicts so callers never share a live
    object with storage.
    """

    def __init__(self, *, clock: Clock = utc_now):
        self._jobs: dict[str, dict[str, Any]] = {}
        self._timelines: dict[str, dict[str, Any]] = {}
        self._config: dict[str, Any] | None = None
        self._clock = clock
        self.flush_count = 0

    async def init(self) -> None:
        return None

    async def save_job(self, job: ReconciliationJob) -> None:
        self._jobs[job.id] = job.to_dict()

    async def get_job(self, job_id: str) -> ReconciliationJob | None:
        data = self._jobs.get(job_id)
        return ReconciliationJob.from_dict(data) if data else None

    def _all(self) -> list[ReconciliationJob]:
        return [ReconciliationJob.from_dict(d) for d in self._jobs.values()]

    async def get_all_jobs(self) -> list[ReconciliationJob]:
        return _newest_first(self._all())

    async def get_jobs_by_district(self, district_id: str) -> list[ReconciliationJob]:
        return _newest_first([j for j in self._all() if j.district_id == district_id])

    async def get_jobs_by_status(self, status: JobStatus) -> list[ReconciliationJob]:
        return _newest_first([j for j in self._all() if j.status == JobStatus(status)])

    async def delete_job(self, job_id: str) -> bool:
        self._timelines.pop(job_id, None)
        return self._jobs.pop(job_id, None) is not None

    async def cleanup_old_jobs(self, retention_days: int) -> int:
        cutoff = self._clock() - timedelta(days=retention_days)
        expired = [j.id for j in self._all() if _is_expired(j, cutoff)]
        for job_id in expired:
            await self.delete_job(job_id)
        return len(expired)

    async def save_timeline(self, timeline: ReconciliationTimeline) -> None:
        self._timelines[timeline.job_id] = timeline.to_dict()

    async def get_timeline(self, job_id: str) -> ReconciliationTimeline | None:
        data = self._timelines.get(job_id)
        return ReconciliationTimeline.from_dict(data) if data else None

    async def get_config(self) -> ReconciliationConfig | None:
        return ReconciliationConfig.from_dict(self._config) if self._config else None

    async def save_config(self, config: ReconciliationConfig) -> None:
        self._config = config.to_dict()

    async def flush(self) -> None:
        self.flush_count += 1

    async def get_storage_stats(self) -> dict[str, Any]:
        jobs = self._all()
        by_status: dict[str, int] = {}
        by_district: dict[str, int] = {}
        for job in jobs:
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
            by_district[job.district_id] = by_district.get(job.district_id, 0) + 1
        return {
            "total_jobs": len(jobs),
            "jobs_by_status": by_status,
            "jobs_by_district": by_district,
            "storage_size_bytes": 0,
            "pending_writes": 0,
            "last_updated": None,
        }


__all__ = [
    "SCHEMA_VERSION",
    "FileReconciliationStorage",
    "InMemoryReconciliationStorage",
]
