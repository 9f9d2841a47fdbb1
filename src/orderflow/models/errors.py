"""Standard error codes for the order event pipeline.

Every failure the pipeline can hit maps onto one ErrorCode. The code decides
whether the failure is retried (transient) or surfaced as a permanent
rejection, and which outcome the calling transport reports.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error codes for the event pipeline taxonomy."""

    # Business rule errors (permanent)
    ILLEGAL_TRANSITION = "ERR_ORDER_001"
    ORDER_NOT_FOUND = "ERR_ORDER_002"
    INVALID_EVENT = "ERR_EVENT_001"

    # Concurrency errors (transient)
    VERSION_CONFLICT = "ERR_CONC_001"
    LOCK_TIMEOUT = "ERR_CONC_002"

    # Infrastructure errors (transient)
    STORAGE_UNAVAILABLE = "ERR_INFRA_001"
    DEPENDENCY_ERROR = "ERR_INFRA_002"

    # Retry budget spent (terminal)
    RETRIES_EXHAUSTED = "ERR_RETRY_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.ILLEGAL_TRANSITION: "The requested order state transition is not allowed",
    ErrorCode.ORDER_NOT_FOUND: "Order not found",
    ErrorCode.INVALID_EVENT: "Event payload does not match its event type",
    ErrorCode.VERSION_CONFLICT: "Order was modified concurrently",
    ErrorCode.LOCK_TIMEOUT: "Could not acquire the order lock in time",
    ErrorCode.STORAGE_UNAVAILABLE: "Storage is temporarily unavailable",
    ErrorCode.DEPENDENCY_ERROR: "A downstream dependency failed",
    ErrorCode.RETRIES_EXHAUSTED: "Event could not be applied within its retry budget",
}

# Recovery hints for operators and callers
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.ILLEGAL_TRANSITION: "Do not redeliver; investigate only if the rejection recurs",
    ErrorCode.ORDER_NOT_FOUND: "Redeliver after the order has been created",
    ErrorCode.INVALID_EVENT: "Do not redeliver; fix the event producer",
    ErrorCode.VERSION_CONFLICT: "Redeliver; the order will be reloaded and re-validated",
    ErrorCode.LOCK_TIMEOUT: "Redeliver after backoff",
    ErrorCode.STORAGE_UNAVAILABLE: "Redeliver after backoff",
    ErrorCode.DEPENDENCY_ERROR: "Redeliver after backoff",
    ErrorCode.RETRIES_EXHAUSTED: "Reconcile the event manually from the dead-letter list",
}

# Error codes that are recovered by scheduling another attempt
RETRYABLE_ERRORS: set[ErrorCode] = {
    ErrorCode.ORDER_NOT_FOUND,
    ErrorCode.VERSION_CONFLICT,
    ErrorCode.LOCK_TIMEOUT,
    ErrorCode.STORAGE_UNAVAILABLE,
    ErrorCode.DEPENDENCY_ERROR,
}


def is_retryable(code: ErrorCode) -> bool:
    """Check if an error code is transient and should be retried.

    Args:
        code: The error code.

    Returns:
        True if another attempt may succeed.
    """
    return code in RETRYABLE_ERRORS


class ErrorDetail(BaseModel):
    """Serializable description of a pipeline error."""

    model_config = ConfigDict(strict=True)

    error_code: ErrorCode
    message: str
    recovery: str
    retryable: bool
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
    ) -> "ErrorDetail":
        """Create an ErrorDetail from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorDetail with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            retryable=is_retryable(code),
            details=details,
        )


class PipelineError(Exception):
    """Exception raised by pipeline components.

    Carries an ErrorCode so the retry coordinator can classify it.
    """

    code: ErrorCode = ErrorCode.DEPENDENCY_ERROR

    def __init__(
        self,
        code: ErrorCode | None = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code or self.code
        self.message = ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return is_retryable(self.code)

    def to_error_detail(self) -> ErrorDetail:
        """Convert this exception to an ErrorDetail."""
        return ErrorDetail.from_code(self.code, self.details)

    def __str__(self) -> str:
        if self.details:
            extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({extra})"
        return self.message


class IllegalTransitionError(PipelineError):
    code = ErrorCode.ILLEGAL_TRANSITION


class InvalidEventError(PipelineError):
    code = ErrorCode.INVALID_EVENT


class OrderNotFoundError(PipelineError):
    code = ErrorCode.ORDER_NOT_FOUND


class VersionConflictError(PipelineError):
    code = ErrorCode.VERSION_CONFLICT


class LockTimeoutError(PipelineError):
    code = ErrorCode.LOCK_TIMEOUT


class StorageUnavailableError(PipelineError):
    code = ErrorCode.STORAGE_UNAVAILABLE


class RetriesExhaustedError(PipelineError):
    code = ErrorCode.RETRIES_EXHAUSTED
