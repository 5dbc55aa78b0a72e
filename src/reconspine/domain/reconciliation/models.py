"""
Reconciliation domain models.

Plain dataclasses with ``to_dict()`` / ``from_dict()`` for JSON persistence.
Datetimes are timezone-aware UTC and serialize as ISO-8601 strings.

Entities:
    ReconciliationJob       one per (district, month); lifecycle state
    ReconciliationTimeline  append-only history of cycle observations
    ReconciliationEntry     one cycle's observation
    ReconciliationStatus    derived phase snapshot
    ReconciliationConfig    policy knobs, frozen into a job at start

Snapshots and change sets:
    DistrictStatistics      one upstream snapshot for a district
    DataChanges             diff between two snapshots
    CacheUpdateResult       outcome of pushing a snapshot downstream
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from reconspine.core.timestamps import from_iso8601, to_iso8601


# =============================================================================
# ENUMS
# =============================================================================


class JobStatus(str, Enum):
    """Lifecycle status of a reconciliation job."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ReconciliationPhase(str, Enum):
    """Coarse lifecycle stage reported in a status."""

    MONITORING = "monitoring"
    STABILIZING = "stabilizing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggeredBy(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


def make_job_id(district_id: str, target_month: str) -> str:
    """Deterministic job id for a (district, month) pair."""
    return f"reconciliation-{district_id}-{target_month}"


def _dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return from_iso8601(value)


# =============================================================================
# CONFIG
# =============================================================================


@dataclass(frozen=True)
class SignificantChangeThresholds:
    """Magnitudes at or above which a change counts as significant."""

    membership_percent: float = 1.0
    club_count_absolute: int = 1
    distinguished_percent: float = 2.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignificantChangeThresholds:
        return cls(**{k: v for k, v in data.items() if k in _THRESHOLD_FIELDS})


@dataclass(frozen=True)
class ReconciliationConfig:
    """Reconciliation policy. Frozen into each job at start time."""

    max_reconciliation_days: int = 15
    stability_period_days: int = 3
    check_frequency_hours: int = 24
    max_extension_days: int = 5
    auto_extension_enabled: bool = True
    significant_change_thresholds: SignificantChangeThresholds = field(
        default_factory=SignificantChangeThresholds
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_reconciliation_days": self.max_reconciliation_days,
            "stability_period_days": self.stability_period_days,
            "check_frequency_hours": self.check_frequency_hours,
            "max_extension_days": self.max_extension_days,
            "auto_extension_enabled": self.auto_extension_enabled,
            "significant_change_thresholds": self.significant_change_thresholds.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReconciliationConfig:
        kwargs = {k: v for k, v in data.items() if k in _CONFIG_SCALARS}
        if "significant_change_thresholds" in data:
            kwargs["significant_change_thresholds"] = SignificantChangeThresholds.from_dict(
                data["significant_change_thresholds"]
            )
        return cls(**kwargs)

    def merged(self, partial: dict[str, Any]) -> ReconciliationConfig:
        """Overlay a partial dict (thresholds merge key by key)."""
        scalars = {k: v for k, v in partial.items() if k in _CONFIG_SCALARS}
        thresholds = self.significant_change_thresholds
        if isinstance(partial.get("significant_change_thresholds"), dict):
            thresholds = replace(
                thresholds,
                **{
                    k: v
                    for k, v in partial["significant_change_thresholds"].items()
                    if k in _THRESHOLD_FIELDS
                },
            )
        return replace(self, significant_change_thresholds=thresholds, **scalars)


_CONFIG_SCALARS = frozenset({
    "max_reconciliation_days",
    "stability_period_days",
    "check_frequency_hours",
    "max_extension_days",
    "auto_extension_enabled",
})
_THRESHOLD_FIELDS = frozenset({"membership_percent", "club_count_absolute", "distinguished_percent"})
CONFIG_FIELDS = _CONFIG_SCALARS | {"significant_change_thresholds"}
THRESHOLD_FIELDS = _THRESHOLD_FIELDS


# =============================================================================
# SNAPSHOTS & CHANGE SETS
# =============================================================================


@dataclass
class DistrictStatistics:
    """One upstream snapshot of a district's statistics."""

    district_id: str
    as_of_date: str
    membership_total: int = 0
    clubs_total: int = 0
    clubs_active: int = 0
    clubs_distinguished: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DistrictStatistics:
        return cls(**data)


@dataclass
class MembershipChange:
    previous: int
    current: int
    percent_change: float


@dataclass
class ClubCountChange:
    previous: int
    current: int
    absolute_change: int


@dataclass
class DistinguishedChange:
    previous: int
    current: int
    percent_change: float


@dataclass
class DataChanges:
    """Diff produced by the change detector."""

    has_changes: bool
    changed_fields: list[str]
    timestamp: datetime
    source_data_date: str
    membership_change: MembershipChange | None = None
    club_count_change: ClubCountChange | None = None
    distinguished_change: DistinguishedChange | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_changes": self.has_changes,
            "changed_fields": list(self.changed_fields),
            "timestamp": to_iso8601(self.timestamp),
            "source_data_date": self.source_data_date,
            "membership_change": asdict(self.membership_change) if self.membership_change else None,
            "club_count_change": asdict(self.club_count_change) if self.club_count_change else None,
            "distinguished_change": (
                asdict(self.distinguished_change) if self.distinguished_change else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataChanges:
        membership = data.get("membership_change")
        clubs = data.get("club_count_change")
        distinguished = data.get("distinguished_change")
        return cls(
            has_changes=data["has_changes"],
            changed_fields=list(data.get("changed_fields", [])),
            timestamp=_dt(data["timestamp"]),
            source_data_date=data["source_data_date"],
            membership_change=MembershipChange(**membership) if membership else None,
            club_count_change=ClubCountChange(**clubs) if clubs else None,
            distinguished_change=DistinguishedChange(**distinguished) if distinguished else None,
        )


@dataclass
class CacheUpdateResult:
    """Outcome of pushing a snapshot into downstream caches."""

    success: bool
    updated: bool = False
    backup_created: bool = False
    rollback_available: bool = False
    error: str | None = None


# =============================================================================
# JOB
# =============================================================================


@dataclass
class JobProgress:
    phase: ReconciliationPhase = ReconciliationPhase.MONITORING
    completion_percentage: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase.value, "completion_percentage": self.completion_percentage}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobProgress:
        return cls(
            phase=ReconciliationPhase(data.get("phase", "monitoring")),
            completion_percentage=data.get("completion_percentage", 0),
        )


@dataclass
class JobMetadata:
    created_at: datetime
    updated_at: datetime
    triggered_by: TriggeredBy = TriggeredBy.MANUAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "triggered_by": self.triggered_by.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobMetadata:
        return cls(
            created_at=_dt(data["created_at"]),
            updated_at=_dt(data["updated_at"]),
            triggered_by=TriggeredBy(data.get("triggered_by", "manual")),
        )


@dataclass
class ReconciliationJob:
    """
    One reconciliation per (district, month).

    ``max_end_date`` is the hard ceiling on monitoring; extensions push it
    out. Once ``status`` leaves ``active`` only metadata timestamps change.
    """

    id: str
    district_id: str
    target_month: str
    status: JobStatus
    start_date: datetime
    max_end_date: datetime
    config: ReconciliationConfig
    metadata: JobMetadata
    triggered_by: TriggeredBy = TriggeredBy.MANUAL
    progress: JobProgress = field(default_factory=JobProgress)
    end_date: datetime | None = None
    finalized_date: datetime | None = None
    current_data_date: str | None = None

    def __post_init__(self):
        if self.max_end_date < self.start_date:
            raise ValueError("max_end_date must not precede start_date")

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "district_id": self.district_id,
            "target_month": self.target_month,
            "status": self.status.value,
            "start_date": to_iso8601(self.start_date),
            "max_end_date": to_iso8601(self.max_end_date),
            "end_date": to_iso8601(self.end_date),
            "finalized_date": to_iso8601(self.finalized_date),
            "config": self.config.to_dict(),
            "triggered_by": self.triggered_by.value,
            "current_data_date": self.current_data_date,
            "progress": self.progress.to_dict(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReconciliationJob:
        return cls(
            id=data["id"],
            district_id=data["district_id"],
            target_month=data["target_month"],
            status=JobStatus(data["status"]),
            start_date=_dt(data["start_date"]),
            max_end_date=_dt(data["max_end_date"]),
            end_date=_dt(data.get("end_date")),
            finalized_date=_dt(data.get("finalized_date")),
            config=ReconciliationConfig.from_dict(data.get("config", {})),
            triggered_by=TriggeredBy(data.get("triggered_by", "manual")),
            current_data_date=data.get("current_data_date"),
            progress=JobProgress.from_dict(data.get("progress", {})),
            metadata=JobMetadata.from_dict(data["metadata"]),
        )


# =============================================================================
# TIMELINE
# =============================================================================


@dataclass
class ReconciliationStatus:
    """Derived phase snapshot; recomputed every cycle."""

    phase: ReconciliationPhase
    days_active: int
    days_stable: int
    message: str
    next_check_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "days_active": self.days_active,
            "days_stable": self.days_stable,
            "next_check_date": to_iso8601(self.next_check_date),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReconciliationStatus:
        return cls(
            phase=ReconciliationPhase(data["phase"]),
            days_active=data.get("days_active", 0),
            days_stable=data.get("days_stable", 0),
            next_check_date=_dt(data.get("next_check_date")),
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class ReconciliationEntry:
    """One cycle's observation. Immutable once created."""

    date: datetime
    source_data_date: str
    changes: DataChanges
    is_significant: bool
    cache_updated: bool
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": to_iso8601(self.date),
            "source_data_date": self.source_data_date,
            "changes": self.changes.to_dict(),
            "is_significant": self.is_significant,
            "cache_updated": self.cache_updated,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReconciliationEntry:
        return cls(
            date=_dt(data["date"]),
            source_data_date=data["source_data_date"],
            changes=DataChanges.from_dict(data["changes"]),
            is_significant=data["is_significant"],
            cache_updated=data["cache_updated"],
            notes=data.get("notes"),
        )


@dataclass
class ReconciliationTimeline:
    """Append-only cycle history for one job."""

    job_id: str
    district_id: str
    target_month: str
    status: ReconciliationStatus
    entries: list[ReconciliationEntry] = field(default_factory=list)

    def append(self, entry: ReconciliationEntry) -> None:
        self.entries.append(entry)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "district_id": self.district_id,
            "target_month": self.target_month,
            "entries": [e.to_dict() for e in self.entries],
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReconciliationTimeline:
        return cls(
            job_id=data["job_id"],
            district_id=data["district_id"],
            target_month=data["target_month"],
            entries=[ReconciliationEntry.from_dict(e) for e in data.get("entries", [])],
            status=ReconciliationStatus.from_dict(data["status"]),
        )


@dataclass(frozen=True)
class ExtensionInfo:
    """Read-only view of a job's extension headroom."""

    current_extension_days: int
    max_extension_days: int
    remaining_extension_days: int
    can_extend: bool
    auto_extension_enabled: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "JobStatus",
    "ReconciliationPhase",
    "TriggeredBy",
    "make_job_id",
    "SignificantChangeThresholds",
    "ReconciliationConfig",
    "CONFIG_FIELDS",
    "THRESHOLD_FIELDS",
    "DistrictStatistics",
    "MembershipChange",
    "ClubCountChange",
    "DistinguishedChange",
    "DataChanges",
    "CacheUpdateResult",
    "JobProgress",
    "JobMetadata",
    "ReconciliationJob",
    "ReconciliationStatus",
    "ReconciliationEntry",
    "ReconciliationTimeline",
    "ExtensionInfo",
]
