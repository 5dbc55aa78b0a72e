"""
Process settings for reconspine.

Every field can be set through a ``RECON_*`` environment variable (for
example ``RECON_STORAGE_DIR=/var/lib/recon``) or a ``.env`` file. These are
process-level knobs: where state lives, how logs render, how the storage
circuit breaker and retry behave. The reconciliation *policy* (stability
window, extension cap, thresholds) is seeded from the ``default_*`` fields
here but owned at runtime by
:class:`~reconspine.domain.reconciliation.config_service.ReconciliationConfigService`.
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReconSettings(BaseSettings):
    """Reconspine centralized configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RECON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Service / logging ────────────────────────────────────────
    service_name: str = Field(default="reconspine")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")

    # ── Storage ──────────────────────────────────────────────────
    storage_backend: str = Field(default="file", description="file or memory")
    storage_dir: str = Field(default="data/reconciliation")
    storage_retention_days: int = Field(default=365, ge=1)

    # ── Read-through cache ───────────────────────────────────────
    cache_max_size: int = Field(default=1_000, ge=1)
    cache_ttl_seconds: int = Field(default=1_800, ge=1)

    # ── Storage circuit breaker ──────────────────────────────────
    breaker_failure_threshold: int = Field(default=3, ge=1)
    breaker_recovery_timeout_seconds: float = Field(default=30.0, gt=0)
    breaker_monitoring_window_seconds: float = Field(default=120.0, gt=0)

    # ── Storage retry ────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)

    # ── Alerting ─────────────────────────────────────────────────
    alert_min_severity: str = Field(default="LOW")
    alert_throttle_minutes: int = Field(default=5, ge=0)
    alert_webhook_url: str | None = Field(default=None)

    # ── Default reconciliation policy ────────────────────────────
    default_max_reconciliation_days: int = Field(default=15)
    default_stability_period_days: int = Field(default=3)
    default_check_frequency_hours: int = Field(default=24)
    default_max_extension_days: int = Field(default=5)
    default_auto_extension_enabled: bool = Field(default=True)
    default_membership_percent: float = Field(default=1.0)
    default_club_count_absolute: int = Field(default=1)
    default_distinguished_percent: float = Field(default=2.0)

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @field_validator("storage_backend")
    @classmethod
    def _check_storage_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("file", "memory"):
            raise ValueError("storage_backend must be 'file' or 'memory'")
        return value

    @field_validator("alert_min_severity")
    @classmethod
    def _check_severity(cls, value: str) -> str:
        value = value.upper()
        if value not in ("LOW", "MEDIUM", "HIGH", "CRITICAL"):
            raise ValueError("alert_min_severity must be LOW, MEDIUM, HIGH or CRITICAL")
        return value

    @model_validator(mode="after")
    def _check_retry_delays(self) -> ReconSettings:
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        return self


_settings_cache: dict[str, ReconSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ReconSettings:
    """Load, validate, and cache a :class:`ReconSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = ReconSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["ReconSettings", "get_settings", "clear_settings_cache"]
