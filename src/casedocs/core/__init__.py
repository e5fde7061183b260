"""Core utilities shared by the case document services."""

from casedocs.core.logging import get_logger, configure_logging, log_context
from casedocs.core.errors import (
    CaseDocsError,
    ValidationError,
    ConflictError,
    PermissionDeniedError,
    UploadTimeoutError,
    NotFoundError,
    InvalidStateError,
    InvariantViolationError,
    VersionStoreError,
)
from casedocs.core.resilience import (
    RetryConfig,
    RetryHandler,
    ErrorCategory,
    ErrorCategorizer,
    ErrorLogger,
    ErrorRecord,
    get_error_logger,
    call_with_timeout,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "log_context",
    # Errors
    "CaseDocsError",
    "ValidationError",
    "ConflictError",
    "PermissionDeniedError",
    "UploadTimeoutError",
    "NotFoundError",
    "InvalidStateError",
    "InvariantViolationError",
    "VersionStoreError",
    # Resilience
    "RetryConfig",
    "RetryHandler",
    "ErrorCategory",
    "ErrorCategorizer",
    "ErrorLogger",
    "ErrorRecord",
    "get_error_logger",
    "call_with_timeout",
]
