"""
Reconciliation configuration validation.

:func:`validate_configuration` checks a partial update against the current
policy. Hard errors reject the update; warnings flag values that are legal but
probably unintended. ``stability_period_days <= max_reconciliation_days`` is
checked both on the submitted field and again on the merged result, since
changing one field can invalidate the other stored one.

Booleans are not accepted where integers are expected, and unknown keys are
errors rather than silently ignored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from reconspine.core.errors import ConfigValidationError
from reconspine.domain.reconciliation.models import (
    CONFIG_FIELDS,
    THRESHOLD_FIELDS,
    ReconciliationConfig,
)

STABILITY_EXCEEDS_MAX = "stability_period_days cannot be greater than max_reconciliation_days"


@dataclass
class ConfigValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    validated_config: ReconciliationConfig | None = None

    def raise_if_invalid(self, prefix: str = "Invalid configuration") -> ReconciliationConfig:
        """Return the validated config or raise :class:`ConfigValidationError`."""
        if not self.is_valid or self.validated_config is None:
            raise ConfigValidationError(self.errors, warnings=self.warnings, prefix=prefix)
        return self.validated_config

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "validated_config": self.validated_config.to_dict() if self.validated_config else None,
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _check_thresholds(thresholds: Any, errors: list[str], warnings: list[str]) -> None:
    if not isinstance(thresholds, dict):
        errors.append("significant_change_thresholds must be a mapping")
        return

    for key in sorted(set(thresholds) - THRESHOLD_FIELDS):
        errors.append(f"Unknown threshold field: {key}")

    if "membership_percent" in thresholds:
        value = thresholds["membership_percent"]
        if not _is_number(value) or value < 0:
            errors.append(
                "significant_change_thresholds.membership_percent must be a non-negative number"
            )
        elif value > 10:
            warnings.append(
                "membership_percent threshold is very high (>10%), significant changes may be missed"
            )

    if "club_count_absolute" in thresholds:
        value = thresholds["club_count_absolute"]
        if not _is_int(value) or value < 0:
            errors.append(
                "significant_change_thresholds.club_count_absolute must be a non-negative integer"
            )

    if "distinguished_percent" in thresholds:
        value = thresholds["distinguished_percent"]
        if not _is_number(value) or value < 0:
            errors.append(
                "significant_change_thresholds.distinguished_percent must be a non-negative number"
            )
        elif value > 20:
            warnings.append(
                "distinguished_percent threshold is very high (>20%), significant changes may be missed"
            )


def validate_configuration(
    partial: dict[str, Any], current: ReconciliationConfig
) -> ConfigValidationResult:
    """Validate ``partial`` as an update to ``current``."""
    errors: list[str] = []
    warnings: list[str] = []

    for key in sorted(set(partial) - CONFIG_FIELDS):
        errors.append(f"Unknown configuration field: {key}")

    max_days = partial.get("max_reconciliation_days", current.max_reconciliation_days)

    if "max_reconciliation_days" in partial:
        value = partial["max_reconciliation_days"]
        if not _is_int(value) or value < 1:
            errors.append("max_reconciliation_days must be a positive integer")
        elif value > 30:
            warnings.append(
                "max_reconciliation_days is very high (>30 days), consider reducing for better performance"
            )

    if "stability_period_days" in partial:
        value = partial["stability_period_days"]
        if not _is_int(value) or value < 1:
            errors.append("stability_period_days must be a positive integer")
        elif _is_int(max_days) and value > max_days:
            errors.append(STABILITY_EXCEEDS_MAX)

    if "check_frequency_hours" in partial:
        value = partial["check_frequency_hours"]
        if not _is_int(value) or value < 1:
            errors.append("check_frequency_hours must be a positive integer")
        elif value < 6:
            warnings.append(
                "check_frequency_hours is very low (<6 hours), this may cause excessive API calls"
            )
        elif value > 48:
            warnings.append(
                "check_frequency_hours is very high (>48 hours), changes may be detected late"
            )

    if "max_extension_days" in partial:
        value = partial["max_extension_days"]
        if not _is_int(value) or value < 0:
            errors.append("max_extension_days must be a non-negative integer")
        elif value > 15:
            warnings.append(
                "max_extension_days is very high (>15 days), consider reducing to avoid "
                "indefinite reconciliation"
            )

    if "significant_change_thresholds" in partial:
        _check_thresholds(partial["significant_change_thresholds"], errors, warnings)

    if "auto_extension_enabled" in partial and not isinstance(
        partial["auto_extension_enabled"], bool
    ):
        errors.append("auto_extension_enabled must be a boolean")

    # Cross-field checks on the merged view
    stability = partial.get("stability_period_days", current.stability_period_days)
    if (
        _is_int(stability)
        and _is_int(max_days)
        and stability > max_days
        and STABILITY_EXCEEDS_MAX not in errors
    ):
        errors.append(STABILITY_EXCEEDS_MAX)

    extension_days = partial.get("max_extension_days", current.max_extension_days)
    auto_extension = partial.get("auto_extension_enabled", current.auto_extension_enabled)
    if _is_int(extension_days) and extension_days > 0 and auto_extension is False:
        warnings.append(
            "max_extension_days is set but auto_extension_enabled is false - "
            "extensions will not be automatic"
        )

    if errors:
        return ConfigValidationResult(False, errors, warnings)
    return ConfigValidationResult(True, [], warnings, current.merged(partial))


__all__ = ["ConfigValidationResult", "validate_configuration", "STABILITY_EXCEEDS_MAX"]
