"""
Global reconciliation policy.

:class:`ReconciliationConfigService` owns the policy that new jobs start
from. It is loaded lazily from storage (``config.json`` for the file
backend), falls back to the defaults when nothing is persisted, and keeps
the loaded value in memory. Updates are validated before they are saved.
"""

from __future__ import annotations

from typing import Any

from reconspine.core.config.settings import ReconSettings
from reconspine.core.logging import get_logger
from reconspine.domain.reconciliation.contracts import ReconciliationStorage
from reconspine.domain.reconciliation.models import (
    ReconciliationConfig,
    SignificantChangeThresholds,
)
from reconspine.domain.reconciliation.validation import validate_configuration

logger = get_logger(__name__)


def policy_from_settings(settings: ReconSettings) -> ReconciliationConfig:
    """Build the default policy from ``RECON_DEFAULT_*`` settings."""
    return ReconciliationConfig(
        max_reconciliation_days=settings.default_max_reconciliation_days,
        stability_period_days=settings.default_stability_period_days,
        check_frequency_hours=settings.default_check_frequency_hours,
        max_extension_days=settings.default_max_extension_days,
        auto_extension_enabled=settings.default_auto_extension_enabled,
        significant_change_thresholds=SignificantChangeThresholds(
            membership_percent=settings.default_membership_percent,
            club_count_absolute=settings.default_club_count_absolute,
            distinguished_percent=settings.default_distinguished_percent,
        ),
    )


class ReconciliationConfigService:
    """Load, validate, persist and cache the global policy."""

    def __init__(
        self,
        storage: ReconciliationStorage,
        *,
        defaults: ReconciliationConfig | None = None,
    ):
        self._storage = storage
        self._defaults = defaults or ReconciliationConfig()
        self._cached: ReconciliationConfig | None = None

    @property
    def defaults(self) -> ReconciliationConfig:
        return self._defaults

    async def get_config(self) -> ReconciliationConfig:
        if self._cached is None:
            stored = await self._storage.get_config()
            self._cached = stored or self._defaults
            logger.debug("config.loaded", source="storage" if stored else "defaults")
        return self._cached

    async def update_config(self, updates: dict[str, Any]) -> ReconciliationConfig:
        """Validate ``updates`` against the current policy, then persist the merge."""
        current = await self.get_config()
        result = validate_configuration(updates, current)
        config = result.raise_if_invalid(prefix="Configuration validation failed")

        await self._storage.save_config(config)
        self._cached = config
        for warning in result.warnings:
            logger.warning("config.warning", warning=warning)
        logger.info("config.updated", fields=sorted(updates))
        return config

    async def reset_to_defaults(self) -> ReconciliationConfig:
        await self._storage.save_config(self._defaults)
        self._cached = self._defaults
        logger.info("config.reset_to_defaults")
        return self._defaults

    def clear_cache(self) -> None:
        self._cached = None


__all__ = ["ReconciliationConfigService", "policy_from_settings"]
