"""In-memory alert channel that records delivered alerts."""

from __future__ import annotations

from typing import Any

from reconspine.framework.alerts.base import BaseChannel
from reconspine.framework.alerts.protocol import (
    Alert,
    AlertCategory,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)


class MemoryChannel(BaseChannel):
    """
    Keeps delivered alerts in a list.

    Useful for tests and for exposing recent alerts on an admin endpoint.
    """

    def __init__(self, name: str = "memory", *, max_alerts: int = 1_000, **kwargs: Any):
        super().__init__(name, ChannelType.MEMORY, **kwargs)
        self._max_alerts = max_alerts
        self.alerts: list[Alert] = []

    def send(self, alert: Alert) -> DeliveryResult:
        self.alerts.append(alert)
        if len(self.alerts) > self._max_alerts:
            del self.alerts[: len(self.alerts) - self._max_alerts]
        return DeliveryResult.ok(self._name)

    def titles(self) -> list[str]:
        return [a.title for a in self.alerts]

    def find(
        self,
        *,
        title: str | None = None,
        severity: AlertSeverity | None = None,
        category: AlertCategory | None = None,
    ) -> list[Alert]:
        """Alerts matching every filter given."""
        return [
            a
            for a in self.alerts
            if (title is None or a.title == title)
            and (severity is None or a.severity == severity)
            and (category is None or a.category == category)
        ]

    def clear(self) -> None:
        self.alerts.clear()
