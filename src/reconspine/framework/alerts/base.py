"""
Alert channel base class.

Provides severity and category filtering plus enable/disable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from reconspine.framework.alerts.protocol import (
    Alert,
    AlertCategory,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)


class BaseChannel(ABC):
    """Base class for alert channel implementations."""

    blocking: bool = False

    def __init__(
        self,
        name: str,
        channel_type: ChannelType,
        *,
        min_severity: AlertSeverity = AlertSeverity.LOW,
        categories: list[AlertCategory] | None = None,
        enabled: bool = True,
    ):
        self._name = name
        self._channel_type = channel_type
        self._min_severity = min_severity
        self._categories = categories  # None means all categories
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    @property
    def min_severity(self) -> AlertSeverity:
        return self._min_severity

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def should_send(self, alert: Alert) -> bool:
        """Check if alert passes this channel's filters."""
        if not self._enabled:
            return False
        if alert.severity < self._min_severity:
            return False
        if self._categories and alert.category not in self._categories:
            return False
        return True

    @abstractmethod
    def send(self, alert: Alert) -> DeliveryResult:
        """Send alert to the channel."""
        ...
