"""Console alert channel for development."""

from __future__ import annotations

from typing import Any

from reconspine.framework.alerts.base import BaseChannel
from reconspine.framework.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)

_COLORS = {
    AlertSeverity.LOW: "\033[34m",       # Blue
    AlertSeverity.MEDIUM: "\033[33m",    # Yellow
    AlertSeverity.HIGH: "\033[31m",      # Red
    AlertSeverity.CRITICAL: "\033[35m",  # Magenta
}


class ConsoleChannel(BaseChannel):
    """Prints alerts to stdout with formatting."""

    def __init__(
        self,
        name: str = "console",
        *,
        min_severity: AlertSeverity = AlertSeverity.LOW,
        color: bool = True,
        **kwargs: Any,
    ):
        super().__init__(name, ChannelType.CONSOLE, min_severity=min_severity, **kwargs)
        self._color = color

    def send(self, alert: Alert) -> DeliveryResult:
        color = _COLORS.get(alert.severity, "") if self._color else ""
        reset = "\033[0m" if self._color else ""

        print(f"{color}[{alert.severity.value}] [{alert.category.value}] {alert.title}{reset}")
        if alert.job_id:
            print(f"  Job: {alert.job_id}")
        print(f"  Message: {alert.message}")
        print()

        return DeliveryResult.ok(self._name)
