"""Pydantic models for the order event pipeline."""

from .audit import AuditRecord
from .enums import (
    AuditAction,
    EventStatus,
    EventType,
    OrderState,
    ProcessingOutcome,
    RecordStatus,
    TERMINAL_EVENT_STATUSES,
    TransitionResult,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    RETRYABLE_ERRORS,
    ErrorCode,
    ErrorDetail,
    IllegalTransitionError,
    InvalidEventError,
    LockTimeoutError,
    OrderNotFoundError,
    PipelineError,
    RetriesExhaustedError,
    StorageUnavailableError,
    VersionConflictError,
    is_retryable,
)
from .event_record import EventRecord
from .events import (
    DeliveryConfirmed,
    DisputeClosed,
    DisputeCreated,
    FundsReleased,
    HandoverReady,
    InboundEvent,
    OrderCancelled,
    OrderEvent,
    PaymentCanceled,
    PaymentFailed,
    PaymentSucceeded,
    Refunded,
    ShipmentDispatched,
)
from .order import Order
from .results import (
    OUTCOME_TO_HTTP_STATUS,
    OrderWrite,
    OutcomeNotification,
    ProcessingResult,
    RecordResult,
    get_http_status_for_outcome,
)

__all__ = [
    # Enums
    "AuditAction",
    "EventStatus",
    "EventType",
    "OrderState",
    "ProcessingOutcome",
    "RecordStatus",
    "TERMINAL_EVENT_STATUSES",
    "TransitionResult",
    # Events
    "InboundEvent",
    "OrderEvent",
    "PaymentSucceeded",
    "PaymentFailed",
    "PaymentCanceled",
    "DisputeCreated",
    "DisputeClosed",
    "Refunded",
    "HandoverReady",
    "ShipmentDispatched",
    "DeliveryConfirmed",
    "FundsReleased",
    "OrderCancelled",
    # Persisted rows
    "AuditRecord",
    "EventRecord",
    "Order",
    # Results
    "OUTCOME_TO_HTTP_STATUS",
    "OrderWrite",
    "OutcomeNotification",
    "ProcessingResult",
    "RecordResult",
    "get_http_status_for_outcome",
    # Errors
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "RETRYABLE_ERRORS",
    "ErrorCode",
    "ErrorDetail",
    "IllegalTransitionError",
    "InvalidEventError",
    "LockTimeoutError",
    "OrderNotFoundError",
    "PipelineError",
    "RetriesExhaustedError",
    "StorageUnavailableError",
    "VersionConflictError",
    "is_retryable",
]
