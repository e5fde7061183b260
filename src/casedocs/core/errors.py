"""Custom exception classes for case document version control."""

from typing import Optional


class CaseDocsError(Exception):
    """Base exception for all case document errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ValidationError(CaseDocsError):
    """Bad input: file, notes or rejection reason failed validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        failed_checks: Optional[list] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="VALIDATION", **kwargs)
        self.field = field
        self.failed_checks = failed_checks or []
        self.details.update({
            "field": field,
            "failed_checks": self.failed_checks,
        })


class ConflictError(CaseDocsError):
    """The stored state changed between read and write."""

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="CONFLICT", **kwargs)
        self.expected = expected
        self.actual = actual
        self.details.update({
            "expected": expected,
            "actual": actual,
        })


class PermissionDeniedError(CaseDocsError, PermissionError):
    """The backend reported that the actor may not perform the operation."""

    def __init__(
        self,
        message: str,
        actor: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="PERMISSION_DENIED", **kwargs)
        self.actor = actor
        self.operation = operation
        self.details.update({
            "actor": actor,
            "operation": operation,
        })


class UploadTimeoutError(CaseDocsError, TimeoutError):
    """A backend operation did not complete within its timeout.

    The write may still have landed server-side; re-read the history
    before assuming either outcome.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="TIMEOUT", **kwargs)
        self.operation = operation
        self.timeout = timeout
        self.details.update({
            "operation": operation,
            "timeout": timeout,
        })


class NotFoundError(CaseDocsError):
    """Version or slot does not exist."""

    def __init__(
        self,
        message: str,
        version_id: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="NOT_FOUND", **kwargs)
        self.version_id = version_id
        self.details.update({"version_id": version_id})


class InvalidStateError(CaseDocsError):
    """The requested transition is not legal from the current state."""

    def __init__(
        self,
        message: str,
        version_id: Optional[str] = None,
        current_state: Optional[str] = None,
        requested: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="INVALID_STATE", **kwargs)
        self.version_id = version_id
        self.current_state = current_state
        self.requested = requested
        self.details.update({
            "version_id": version_id,
            "current_state": current_state,
            "requested": requested,
        })


class InvariantViolationError(CaseDocsError):
    """A version history snapshot breaks the slot invariants."""

    def __init__(
        self,
        message: str,
        slot: Optional[str] = None,
        violations: Optional[list] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="INVARIANT", **kwargs)
        self.slot = slot
        self.violations = violations or []
        self.details.update({
            "slot": slot,
            "violations": self.violations,
        })


class VersionStoreError(CaseDocsError):
    """Unexpected failure talking to the version store."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="STORE", **kwargs)
        self.operation = operation
        self.status_code = status_code
        self.details.update({
            "operation": operation,
            "status_code": status_code,
        })
