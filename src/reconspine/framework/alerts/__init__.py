"""
Alerting framework package.

Provides a unified interface for sending alerts to various channels.
"""

from reconspine.framework.alerts.base import BaseChannel
from reconspine.framework.alerts.channels import (
    ConsoleChannel,
    MemoryChannel,
    WebhookChannel,
)
from reconspine.framework.alerts.manager import AlertManager
from reconspine.framework.alerts.protocol import (
    Alert,
    AlertCategory,
    AlertChannel,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)

__all__ = [
    # Enums
    "AlertSeverity",
    "AlertCategory",
    "ChannelType",
    # Data classes
    "Alert",
    "DeliveryResult",
    # Protocols
    "AlertChannel",
    # Base class
    "BaseChannel",
    # Implementations
    "ConsoleChannel",
    "MemoryChannel",
    "WebhookChannel",
    # Manager
    "AlertManager",
]
