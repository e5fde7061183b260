"""Resilience patterns for version store calls.

- Error categorization for logging and batch reporting
- Bounded error history
- Retry of explicitly retryable errors (conflicts on upload)
- Timeouts mapped onto the error taxonomy
"""

import asyncio
import itertools
import random
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from casedocs.core.errors import (
    CaseDocsError,
    ConflictError,
    UploadTimeoutError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """Categories for error classification."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    NETWORK = "network"
    STORAGE = "storage"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Only exceptions listed in ``retryable_exceptions`` are retried.
    """

    max_retries: int = 1
    base_delay: float = 0.0
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = False
    retryable_exceptions: tuple = (ConflictError,)


@dataclass
class ErrorRecord:
    """Record of an error occurrence."""

    timestamp: datetime
    category: ErrorCategory
    error_type: str
    message: str
    component: str
    details: dict = field(default_factory=dict)
    retry_count: int = 0

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "error_type": self.error_type,
            "message": self.message,
            "component": self.component,
            "details": self.details,
            "retry_count": self.retry_count,
        }


class ErrorCategorizer:
    """Categorizes errors for logging and reporting."""

    ERROR_CODE_CATEGORIES = {
        "VALIDATION": ErrorCategory.VALIDATION,
        "CONFLICT": ErrorCategory.CONFLICT,
        "PERMISSION_DENIED": ErrorCategory.PERMISSION,
        "TIMEOUT": ErrorCategory.TIMEOUT,
        "NOT_FOUND": ErrorCategory.NOT_FOUND,
        "INVALID_STATE": ErrorCategory.INVALID_STATE,
        "INVARIANT": ErrorCategory.INTERNAL,
        "STORE": ErrorCategory.STORAGE,
    }

    # Checked in order; builtin PermissionError/TimeoutError are covered too
    EXCEPTION_CATEGORIES = (
        (PermissionError, ErrorCategory.PERMISSION),
        (TimeoutError, ErrorCategory.TIMEOUT),
        (asyncio.TimeoutError, ErrorCategory.TIMEOUT),
        (ConnectionError, ErrorCategory.NETWORK),
        (ValueError, ErrorCategory.VALIDATION),
    )

    @classmethod
    def categorize(cls, error: BaseException) -> ErrorCategory:
        """Categorize an exception.

        Args:
            error: The exception to categorize.

        Returns:
            ErrorCategory for the exception.
        """
        if isinstance(error, CaseDocsError) and error.error_code:
            category = cls.ERROR_CODE_CATEGORIES.get(error.error_code)
            if category:
                return category

        for exc_type, category in cls.EXCEPTION_CATEGORIES:
            if isinstance(error, exc_type):
                return category

        if isinstance(error, CaseDocsError):
            return ErrorCategory.INTERNAL

        return ErrorCategory.UNKNOWN

    @classmethod
    def is_retryable(cls, error: BaseException) -> bool:
        """Whether re-invoking the whole operation may succeed.

        Timeouts and network errors qualify, but callers decide when to
        re-invoke; nothing here retries them in a loop.
        """
        return cls.categorize(error) in {
            ErrorCategory.CONFLICT,
            ErrorCategory.TIMEOUT,
            ErrorCategory.NETWORK,
        }


class ErrorLogger:
    """Keeps a bounded history of failures and per-category counts.

    Records feed batch reports and diagnostics; every record is also
    emitted as an ``error_occurred`` log event.
    """

    def __init__(self, max_history: int = 1000):
        self._history: deque[ErrorRecord] = deque(maxlen=max_history)
        self._counts: Counter = Counter()

    def log_error(
        self,
        error: BaseException,
        component: str,
        details: Optional[dict] = None,
        retry_count: int = 0,
    ) -> ErrorRecord:
        """Record a failure.

        Args:
            error: The failure.
            component: Where it happened, e.g. ``batch_upload``.
            details: Extra context (job id, file index, ...).
            retry_count: Attempts already made before this failure.
        """
        record = ErrorRecord(
            timestamp=datetime.now(timezone.utc),
            category=ErrorCategorizer.categorize(error),
            error_type=type(error).__name__,
            message=str(error),
            component=component,
            details=dict(details or {}),
            retry_count=retry_count,
        )
        self._history.append(record)
        self._counts[record.category] += 1

        logger.warning(
            "error_occurred",
            category=record.category.value,
            error_type=record.error_type,
            error=record.message,
            component=component,
            retry_count=retry_count,
            **record.details,
        )
        return record

    def get_error_counts(self) -> dict[str, int]:
        return {category.value: self._counts[category] for category in ErrorCategory}

    def get_recent_errors(
        self,
        limit: int = 100,
        category: Optional[ErrorCategory] = None,
    ) -> list[ErrorRecord]:
        """Most recent records, oldest first."""
        records = [r for r in self._history if category is None or r.category == category]
        return records[-limit:]

    def clear_history(self) -> None:
        self._history.clear()
        self._counts.clear()


_error_logger = ErrorLogger()


def get_error_logger() -> ErrorLogger:
    """Process-wide error logger used when none is injected."""
    return _error_logger


class RetryHandler:
    """Re-invokes an async operation on retryable failures."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        error_logger: Optional[ErrorLogger] = None,
    ):
        self.config = config or RetryConfig()
        self.error_logger = error_logger or get_error_logger()

    def calculate_delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``."""
        delay = min(
            self.config.base_delay * self.config.exponential_base ** attempt,
            self.config.max_delay,
        )
        if self.config.jitter:
            delay *= random.uniform(0.75, 1.25)
        return max(0.0, delay)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return (
            attempt < self.config.max_retries
            and isinstance(error, self.config.retryable_exceptions)
        )

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        component: str = "unknown",
        **kwargs,
    ) -> T:
        """Await ``func(*args, **kwargs)``, retrying per the config.

        Every failure is recorded with the error logger, including the one
        that is finally raised.
        """
        for attempt in itertools.count():
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.error_logger.log_error(e, component, retry_count=attempt)
                if not self.should_retry(e, attempt):
                    raise
                delay = self.calculate_delay(attempt)

            logger.info(
                "retrying_operation",
                component=component,
                attempt=attempt + 1,
                max_retries=self.config.max_retries,
                delay=delay,
            )
            if delay:
                await asyncio.sleep(delay)


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    operation: str,
) -> T:
    """Await with an optional timeout, raising UploadTimeoutError on expiry.

    Args:
        awaitable: Operation to await.
        timeout: Seconds, or None for no limit.
        operation: Operation name for the error.

    Returns:
        Result of the awaitable.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except UploadTimeoutError:
        raise
    except asyncio.TimeoutError as e:
        raise UploadTimeoutError(
            f"{operation} timed out after {timeout}s",
            operation=operation,
            timeout=timeout,
        ) from e

