"""Core primitives shared by every reconspine layer.

- errors: typed ReconError hierarchy and HTTP status mapping
- result: Ok/Err envelope for absorbed failures
- logging: structlog configuration and scoped context
- timestamps: UTC helpers, injectable clocks
- cache: TTL + LRU key-value cache
- config: pydantic-settings process configuration
"""

from reconspine.core.errors import (
    ConfigValidationError,
    ErrorCategory,
    ErrorContext,
    ExtensionLimitError,
    InvalidStateError,
    JobNotFoundError,
    NotFoundError,
    PersistenceError,
    ReconError,
    StabilityPeriodNotMetError,
    StorageError,
    TimelineNotFoundError,
    TransientError,
    ValidationError,
    http_status_for,
    is_retryable,
)
from reconspine.core.result import Err, Ok, Result, try_result, try_result_async

__all__ = [
    "ConfigValidationError",
    "ErrorCategory",
    "ErrorContext",
    "ExtensionLimitError",
    "InvalidStateError",
    "JobNotFoundError",
    "NotFoundError",
    "PersistenceError",
    "ReconError",
    "StabilityPeriodNotMetError",
    "StorageError",
    "TimelineNotFoundError",
    "TransientError",
    "ValidationError",
    "http_status_for",
    "is_retryable",
    "Err",
    "Ok",
    "Result",
    "try_result",
    "try_result_async",
]
