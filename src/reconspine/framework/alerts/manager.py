"""
Alert manager: routes alerts to registered channels.

Alerting is best-effort. A channel that raises or fails to deliver is logged
and never propagates into the caller, so an outage of the alert sink cannot
fail a reconciliation cycle.

Repeated alerts with the same fingerprint inside ``throttle_window`` are
suppressed. Fingerprints older than the window are dropped on the next
dispatch.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Any

from reconspine.core.logging import get_logger
from reconspine.core.timestamps import Clock, utc_now
from reconspine.framework.alerts.protocol import (
    Alert,
    AlertCategory,
    AlertChannel,
    AlertSeverity,
    DeliveryResult,
)

logger = get_logger(__name__)


class AlertManager:
    """
    Registry of channels plus throttled dispatch.

    Example:
        manager = AlertManager(throttle_window=timedelta(minutes=5))
        manager.register(ConsoleChannel())
        await manager.send_alert(
            AlertSeverity.HIGH,
            AlertCategory.SYSTEM,
            "Reconciliation Save Failed",
            "Failed to save reconciliation updates for job ...",
            {"job_id": job_id},
        )
    """

    def __init__(
        self,
        *,
        throttle_window: timedelta = timedelta(minutes=5),
        min_severity: AlertSeverity = AlertSeverity.LOW,
        history_size: int = 500,
        clock: Clock = utc_now,
    ):
        self._channels: dict[str, AlertChannel] = {}
        self._throttle_window = throttle_window
        self._min_severity = min_severity
        self._clock = clock
        self._last_sent: dict[str, datetime] = {}
        self._history: deque[Alert] = deque(maxlen=history_size)
        self.suppressed_count = 0

    def register(self, channel: AlertChannel) -> None:
        self._channels[channel.name] = channel

    def unregister(self, name: str) -> None:
        self._channels.pop(name, None)

    def list_channels(self) -> list[str]:
        return sorted(self._channels.keys())

    def _is_throttled(self, alert: Alert) -> bool:
        if not self._throttle_window:
            return False
        last = self._last_sent.get(alert.fingerprint or "")
        return last is not None and alert.created_at - last < self._throttle_window

    def _prune_throttle(self, now: datetime) -> None:
        cutoff = now - self._throttle_window
        for fingerprint in [k for k, sent in self._last_sent.items() if sent <= cutoff]:
            del self._last_sent[fingerprint]

    async def _deliver(self, channel: AlertChannel, alert: Alert) -> DeliveryResult:
        try:
            if channel.blocking:
                result = await asyncio.to_thread(channel.send, alert)
            else:
                result = channel.send(alert)
        except Exception as e:
            logger.exception("alert.channel_error", channel=channel.name, error=str(e))
            return DeliveryResult.fail(channel.name, e)
        if not result.success:
            logger.warning("alert.delivery_failed", channel=channel.name, error=result.message)
        return result

    async def dispatch(self, alert: Alert) -> list[DeliveryResult]:
        """Send a prepared alert to every matching channel."""
        if alert.severity < self._min_severity:
            return []
        self._prune_throttle(alert.created_at)
        if self._is_throttled(alert):
            self.suppressed_count += 1
            logger.debug("alert.throttled", fingerprint=alert.fingerprint)
            return []

        self._last_sent[alert.fingerprint or ""] = alert.created_at
        self._history.append(alert)
        logger.info(
            "alert.raised",
            severity=alert.severity.value,
            category=alert.category.value,
            title=alert.title,
            job_id=alert.job_id,
        )

        results = []
        for channel in list(self._channels.values()):
            if channel.should_send(alert):
                results.append(await self._deliver(channel, alert))
        return results

    async def send_alert(
        self,
        severity: AlertSeverity,
        category: AlertCategory,
        title: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> Alert:
        """Build and dispatch an alert; returns the alert that was built."""
        context = dict(context or {})
        alert = Alert(
            severity=severity,
            category=category,
            title=title,
            message=message,
            job_id=context.get("job_id"),
            district_id=context.get("district_id"),
            context=context,
            created_at=self._clock(),
        )
        await self.dispatch(alert)
        return alert

    async def send_reconciliation_failure_alert(
        self,
        district_id: str,
        target_month: str,
        error: str,
        job_id: str | None = None,
    ) -> Alert:
        """High-severity alert for a reconciliation that could not proceed."""
        return await self.send_alert(
            AlertSeverity.HIGH,
            AlertCategory.RECONCILIATION,
            "Reconciliation Failed",
            f"Reconciliation failed for district {district_id} ({target_month}): {error}",
            {
                "job_id": job_id,
                "district_id": district_id,
                "target_month": target_month,
                "error": error,
            },
        )

    def get_recent_alerts(self, limit: int = 50) -> list[Alert]:
        """Most recent dispatched alerts, newest first."""
        return list(reversed(self._history))[:limit]

    def clear_throttle(self) -> None:
        self._last_sent.clear()


__all__ = ["AlertManager"]
