"""
Structured error types for reconspine.

Every failure the reconciliation core can surface is a :class:`ReconError`
subclass carrying a category, an explicit retry flag, structured context and
an optional chained cause. A thin API layer maps the hierarchy onto
"not found", "invalid in current state" and "transient, retry later"
responses via :func:`http_status_for`.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure kind the caller must
      tell apart
    - **Explicit Retry Semantics:** Each error knows if it is retryable
    - **Rich Context:** Job id, district and month travel with the error
    - **Error Chaining:** The collaborator exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         ReconError                            │
        │      (category, retryable, context, cause, to_dict())         │
        ├──────────────────────────────────────────────────────────────┤
        │  NotFoundError        ValidationError       InvalidStateError │
        │  (NOT_FOUND)          (VALIDATION)          (STATE)           │
        │       │                    │                     │            │
        │  JobNotFoundError     ConfigValidationError StabilityPeriod-  │
        │  TimelineNotFound-                          NotMetError       │
        │  Error                                      ExtensionLimit-   │
        │                                             Error             │
        │                                                               │
        │  TransientError       ChangeDetectionError  PersistenceError  │
        │  (retryable=True)     (DETECTION)           (STORAGE)         │
        │       │                                                       │
        │  StorageError                                                 │
        │  CircuitOpenError                                             │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = JobNotFoundError("reconciliation-42-2024-01")
    >>> error.category
    <ErrorCategory.NOT_FOUND: 'NOT_FOUND'>
    >>> http_status_for(error)
    404

    >>> error = StorageError("disk full").with_context(job_id="reconciliation-42-2024-01")
    >>> error.context.job_id
    'reconciliation-42-2024-01'

Guardrails:
    ❌ DON'T: Raise bare Exception for an expected failure
    ✅ DO: Pick the ReconError subclass the caller needs to distinguish

    ❌ DON'T: Drop the collaborator exception
    ✅ DO: Pass it as ``cause=``

Tags:
    error-handling, exception-hierarchy, retry-logic, reconciliation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for alert routing and API status mapping."""

    NOT_FOUND = "NOT_FOUND"        # Job or timeline missing
    VALIDATION = "VALIDATION"      # Bad configuration or arguments
    STATE = "STATE"                # Operation invalid in current job state
    DETECTION = "DETECTION"        # Change detector failure
    PROPAGATION = "PROPAGATION"    # Downstream cache update failure
    STORAGE = "STORAGE"            # Durable storage read/write
    NETWORK = "NETWORK"            # Outbound calls (alert webhooks)
    CONFIG = "CONFIG"              # Process settings
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging and alerts."""

    job_id: str | None = None
    district_id: str | None = None
    target_month: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "district_id", "target_month", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ReconError(Exception):
    """
    Base exception for all reconspine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReconError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageError("write failed").with_context(
                job_id=job.id,
                operation="save_job",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# NOT FOUND
# =============================================================================


class NotFoundError(ReconError):
    """A requested entity does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


class JobNotFoundError(NotFoundError):
    """Reconciliation job not found."""

    def __init__(self, job_id: str, **kwargs: Any):
        self.job_id = job_id
        super().__init__(f"Reconciliation job not found: {job_id}", **kwargs)
        self.context.job_id = job_id


class TimelineNotFoundError(NotFoundError):
    """Reconciliation timeline not found."""

    def __init__(self, job_id: str, **kwargs: Any):
        self.job_id = job_id
        super().__init__(f"Reconciliation timeline not found: {job_id}", **kwargs)
        self.context.job_id = job_id


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationError(ReconError):
    """
    Argument or data validation error.

    Never retryable - the input must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ConfigValidationError(ValidationError):
    """A reconciliation configuration failed validation."""

    def __init__(
        self,
        errors: list[str],
        *,
        warnings: list[str] | None = None,
        prefix: str = "Invalid configuration",
        **kwargs: Any,
    ):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"{prefix}: {', '.join(self.errors)}", **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        if self.warnings:
            result["warnings"] = self.warnings
        return result


# =============================================================================
# STATE
# =============================================================================


class InvalidStateError(ReconError):
    """The operation is not valid for the job's current state."""

    default_category = ErrorCategory.STATE
    default_retryable = False


class StabilityPeriodNotMetError(InvalidStateError):
    """Finalization was requested before the data settled."""

    def __init__(self, job_id: str, stability_period_days: int, days_stable: int, **kwargs: Any):
        self.job_id = job_id
        self.stability_period_days = stability_period_days
        self.days_stable = days_stable
        super().__init__(
            "Stability period not met - cannot finalize reconciliation "
            f"({days_stable}/{stability_period_days} stable days)",
            **kwargs,
        )
        self.context.job_id = job_id


class ExtensionLimitError(InvalidStateError):
    """No extension headroom remains for the job."""

    def __init__(self, job_id: str, max_extension_days: int, **kwargs: Any):
        self.job_id = job_id
        self.max_extension_days = max_extension_days
        super().__init__(
            "Cannot extend reconciliation - maximum extension limit of "
            f"{max_extension_days} days already reached",
            **kwargs,
        )
        self.context.job_id = job_id


# =============================================================================
# COLLABORATOR FAILURES
# =============================================================================


class ChangeDetectionError(ReconError):
    """The change detector raised while diffing snapshots."""

    default_category = ErrorCategory.DETECTION
    default_retryable = False


class CacheUpdateError(ReconError):
    """Downstream cache propagation failed."""

    default_category = ErrorCategory.PROPAGATION
    default_retryable = False


# =============================================================================
# TRANSIENT / STORAGE
# =============================================================================


class TransientError(ReconError):
    """Temporary failure that may succeed on retry."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class StorageError(TransientError):
    """A storage read or write failed."""

    default_category = ErrorCategory.STORAGE


class CircuitOpenError(TransientError):
    """Raised when a circuit is open and rejecting requests."""

    def __init__(self, message: str = "Circuit breaker is open", **kwargs: Any):
        super().__init__(message, **kwargs)


class PersistenceError(ReconError):
    """Saving reconciliation state failed after retries were exhausted."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class DeliveryError(TransientError):
    """An alert channel could not deliver."""

    default_category = ErrorCategory.NETWORK


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ReconError):
        return error.retryable
    # Unknown exceptions from storage adapters (OSError and friends)
    return isinstance(error, (OSError, TimeoutError, ConnectionError))


def http_status_for(error: Exception) -> int:
    """Map an error to the status a thin HTTP layer should return."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, InvalidStateError):
        return 409
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, (TransientError, PersistenceError)):
        return 503
    return 500


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ReconError",
    "NotFoundError",
    "JobNotFoundError",
    "TimelineNotFoundError",
    "ValidationError",
    "ConfigValidationError",
    "InvalidStateError",
    "StabilityPeriodNotMetError",
    "ExtensionLimitError",
    "ChangeDetectionError",
    "CacheUpdateError",
    "TransientError",
    "StorageError",
    "CircuitOpenError",
    "PersistenceError",
    "DeliveryError",
    "is_retryable",
    "http_status_for",
]
