"""
Collaborator contracts consumed by the reconciliation orchestrator.

Manifesto:
    The orchestrator owns job lifecycle and cycle bookkeeping. Everything
    else (diffing snapshots, persisting jobs, mirroring them in memory,
    pushing fresh statistics to downstream readers) sits behind one of
    these protocols so that deployments and tests can swap implementations
    without touching the orchestrator.

Architecture:
    ::

        ReconciliationOrchestrator
            │
            ├── ChangeDetector          detect_changes / is_significant_change
            ├── ReconciliationStorage   durable jobs + timelines (async)
            ├── CacheMirror             read-through copy keyed by job id
            ├── CacheUpdater            downstream snapshot propagation
            └── ConfigStore             global policy

Guardrails:
    - runtime_checkable: protocols can be used with isinstance()
    - Storage and cache-updater methods are async; detection is sync
    - ``flush()`` guarantees earlier writes are visible to later reads

Tags:
    protocol, dependency-injection, reconciliation
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from reconspine.domain.reconciliation.models import (
    CacheUpdateResult,
    DataChanges,
    DistrictStatistics,
    JobStatus,
    ReconciliationConfig,
    ReconciliationJob,
    ReconciliationStatus,
    ReconciliationTimeline,
    SignificantChangeThresholds,
)


@runtime_checkable
class ChangeDetector(Protocol):
    """Diffs two snapshots and judges significance."""

    def detect_changes(
        self,
        district_id: str,
        before: DistrictStatistics,
        after: DistrictStatistics,
    ) -> DataChanges:
        ...

    def is_significant_change(
        self, changes: DataChanges, thresholds: SignificantChangeThresholds
    ) -> bool:
        ...


@runtime_checkable
class ReconciliationStorage(Protocol):
    """Durable persistence for jobs and timelines, keyed by job id."""

    async def get_job(self, job_id: str) -> ReconciliationJob | None:
        ...

    async def save_job(self, job: ReconciliationJob) -> None:
        ...

    async def get_timeline(self, job_id: str) -> ReconciliationTimeline | None:
        ...

    async def save_timeline(self, timeline: ReconciliationTimeline) -> None:
        ...

    async def get_jobs_by_district(self, district_id: str) -> list[ReconciliationJob]:
        ...

    async def get_jobs_by_status(self, status: JobStatus) -> list[ReconciliationJob]:
        ...

    async def get_all_jobs(self) -> list[ReconciliationJob]:
        ...

    async def delete_job(self, job_id: str) -> bool:
        ...

    async def get_config(self) -> ReconciliationConfig | None:
        ...

    async def save_config(self, config: ReconciliationConfig) -> None:
        ...

    async def flush(self) -> None:
        """Make all previously issued writes visible to subsequent reads."""
        ...


@runtime_checkable
class CacheMirror(Protocol):
    """In-memory mirror of jobs, timelines and derived statuses."""

    def get_job(self, job_id: str) -> ReconciliationJob | None:
        ...

    def set_job(self, job: ReconciliationJob) -> None:
        ...

    def get_timeline(self, job_id: str) -> ReconciliationTimeline | None:
        ...

    def set_timeline(self, timeline: ReconciliationTimeline) -> None:
        ...

    def get_status(self, job_id: str) -> ReconciliationStatus | None:
        ...

    def set_status(self, job_id: str, status: ReconciliationStatus) -> None:
        ...

    def invalidate(self, job_id: str) -> None:
        ...


@runtime_checkable
class CacheUpdater(Protocol):
    """Pushes a fresh snapshot to wherever downstream readers look."""

    async def update_cache_immediately(
        self,
        district_id: str,
        date: str,
        data: DistrictStatistics,
        changes: DataChanges,
    ) -> CacheUpdateResult:
        ...


@runtime_checkable
class ConfigStore(Protocol):
    """Owner of the global reconciliation policy."""

    async def get_config(self) -> ReconciliationConfig:
        ...

    async def update_config(self, updates: dict[str, Any]) -> ReconciliationConfig:
        ...

    async def reset_to_defaults(self) -> ReconciliationConfig:
        ...


__all__ = [
    "ChangeDetector",
    "ReconciliationStorage",
    "CacheMirror",
    "CacheUpdater",
    "ConfigStore",
]
