"""Generic webhook alert channel.

POSTs the alert as JSON to a configured URL so custom integrations work
without dedicated channel code.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any

from reconspine.core.errors import DeliveryError
from reconspine.framework.alerts.base import BaseChannel
from reconspine.framework.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)


class WebhookChannel(BaseChannel):
    """POSTs alert data to a URL."""

    blocking = True

    def __init__(
        self,
        name: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        min_severity: AlertSeverity = AlertSeverity.MEDIUM,
        timeout: float = 10.0,
        **kwargs: Any,
    ):
        super().__init__(name, ChannelType.WEBHOOK, min_severity=min_severity, **kwargs)
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    def send(self, alert: Alert) -> DeliveryResult:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        req = urllib.request.Request(
            self._url,
            data=json.dumps(alert.to_dict(), default=str).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as response:
                return DeliveryResult.ok(self._name, response={"status": response.status})
        except urllib.error.URLError as e:
            return DeliveryResult.fail(
                self._name, DeliveryError(f"Webhook delivery failed: {e}", cause=e)
            )
