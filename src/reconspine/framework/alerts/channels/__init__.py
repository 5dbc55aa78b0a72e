"""Alert channel implementations."""

from reconspine.framework.alerts.channels.console import ConsoleChannel
from reconspine.framework.alerts.channels.memory import MemoryChannel
from reconspine.framework.alerts.channels.webhook import WebhookChannel

__all__ = ["ConsoleChannel", "MemoryChannel", "WebhookChannel"]
