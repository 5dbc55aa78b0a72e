"""
Alerting protocol and data classes.

Defines the channel interface and the core alert types. Concrete channels
live in ``channels/``; routing and throttling live in ``manager.py``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from reconspine.core.timestamps import utc_now


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    def _rank(self) -> int:
        return list(AlertSeverity).index(self)

    def __lt__(self, other: AlertSeverity) -> bool:
        return self._rank() < other._rank()

    def __le__(self, other: AlertSeverity) -> bool:
        return self._rank() <= other._rank()

    def __ge__(self, other: AlertSeverity) -> bool:
        return self._rank() >= other._rank()

    def __gt__(self, other: AlertSeverity) -> bool:
        return self._rank() > other._rank()


class AlertCategory(str, Enum):
    """What part of the system raised the alert."""

    RECONCILIATION = "RECONCILIATION"
    SYSTEM = "SYSTEM"
    STORAGE = "STORAGE"


class ChannelType(str, Enum):
    """Alert channel types."""

    CONSOLE = "console"
    MEMORY = "memory"
    WEBHOOK = "webhook"


@dataclass
class Alert:
    """An alert to be delivered to one or more channels."""

    severity: AlertSeverity
    category: AlertCategory
    title: str
    message: str
    source: str = "reconciliation"

    job_id: str | None = None
    district_id: str | None = None

    context: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    # For deduplication/throttling
    fingerprint: str | None = None

    def __post_init__(self):
        if self.fingerprint is None:
            parts = [self.severity.value, self.category.value, self.title]
            if self.job_id:
                parts.append(self.job_id)
            self.fingerprint = "|".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "severity": self.severity.value,
            "category": self.category.value,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "fingerprint": self.fingerprint,
        }
        if self.job_id:
            result["job_id"] = self.job_id
        if self.district_id:
            result["district_id"] = self.district_id
        if self.context:
            result["context"] = self.context
        return result


@dataclass
class DeliveryResult:
    """Result of an alert delivery attempt."""

    channel_name: str
    success: bool
    message: str | None = None
    response: dict[str, Any] | None = None
    error: Exception | None = None
    delivered_at: datetime = field(default_factory=utc_now)

    @classmethod
    def ok(cls, channel_name: str, message: str | None = None, **kwargs: Any) -> DeliveryResult:
        return cls(channel_name=channel_name, success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, channel_name: str, error: Exception) -> DeliveryResult:
        return cls(channel_name=channel_name, success=False, error=error, message=str(error))


@runtime_checkable
class AlertChannel(Protocol):
    """Protocol for alert channels."""

    @property
    def name(self) -> str:
        ...

    @property
    def channel_type(self) -> ChannelType:
        ...

    @property
    def blocking(self) -> bool:
        """True if ``send`` does network I/O and should run off the event loop."""
        ...

    def should_send(self, alert: Alert) -> bool:
        ...

    def send(self, alert: Alert) -> DeliveryResult:
        ...


__all__ = [
    "AlertSeverity",
    "AlertCategory",
    "ChannelType",
    "Alert",
    "DeliveryResult",
    "AlertChannel",
]
