"""Enumeration types for orderflow data models."""

from enum import Enum


class OrderState(str, Enum):
    """Lifecycle state of an order."""

    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    READY_FOR_HANDOVER = "ready_for_handover"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RELEASED = "released"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    """Event types the pipeline knows how to apply to an order."""

    # Payment provider notifications
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_CLOSED = "dispute_closed"
    REFUNDED = "refunded"

    # Marketplace fulfillment events
    HANDOVER_READY = "handover_ready"
    SHIPMENT_DISPATCHED = "shipment_dispatched"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    FUNDS_RELEASED = "funds_released"
    ORDER_CANCELLED = "order_cancelled"


class EventStatus(str, Enum):
    """Processing status of a persisted event row."""

    RECEIVED = "received"
    PROCESSING = "processing"
    APPLIED = "applied"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"


class ProcessingOutcome(str, Enum):
    """Result of one pipeline attempt, as reported to the caller."""

    DUPLICATE = "duplicate"
    APPLIED = "applied"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"


class AuditAction(str, Enum):
    """Action recorded for each processing attempt."""

    DUPLICATE = "duplicate"
    APPLIED = "applied"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    VERSION_CONFLICT = "version_conflict"
    LOCK_TIMEOUT = "lock_timeout"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"


class TransitionResult(str, Enum):
    """Result of a conditional order write."""

    APPLIED = "applied"
    VERSION_CONFLICT = "version_conflict"


class RecordStatus(str, Enum):
    """Result of recording an event in the event store."""

    FIRST_SEEN = "first_seen"
    DUPLICATE = "duplicate"
    REDELIVERY = "redelivery"
    IN_FLIGHT = "in_flight"


# Event rows in these statuses are final; redeliveries are duplicates.
TERMINAL_EVENT_STATUSES: frozenset[EventStatus] = frozenset(
    {
        EventStatus.APPLIED,
        EventStatus.REJECTED,
        EventStatus.SKIPPED,
        EventStatus.EXHAUSTED,
    }
)
