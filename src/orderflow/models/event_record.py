"""Persisted event row used for idempotency and the processing audit trail."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import EventStatus, TERMINAL_EVENT_STATUSES
from .errors import ErrorCode


class EventRecord(BaseModel):
    """Log of a received event and its processing state.

    Used for:
    - Idempotency: prevent applying the same event twice
    - Retries: carries the retry count and the next attempt time
    - Reconciliation: exhausted rows are the dead-letter list
    """

    model_config = ConfigDict(strict=True)

    event_id: str = Field(
        ...,
        description="Provider event ID",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        description="Event type",
        examples=["payment_succeeded", "refunded"],
    )
    order_id: str | None = Field(
        default=None,
        description="Associated order ID, absent for non-order events",
    )
    status: EventStatus = Field(
        default=EventStatus.RECEIVED,
        description="Processing status",
    )
    received_at: datetime = Field(
        ...,
        description="When the event was first seen",
    )
    processed_at: datetime | None = Field(
        default=None,
        description="When processing reached a terminal status",
    )
    updated_at: datetime = Field(
        ...,
        description="Last write to this row",
    )
    retry_count: int = Field(
        default=0,
        ge=0,
        description="Number of retries scheduled so far",
    )
    next_attempt_at: datetime | None = Field(
        default=None,
        description="Earliest time the next retry may run",
    )
    error_code: ErrorCode | None = Field(
        default=None,
        description="Error code of the last failed attempt",
    )
    error_message: str | None = Field(
        default=None,
        description="Error details of the last failed attempt",
    )
    payload: str = Field(
        default="{}",
        description="Provider payload as canonical JSON, replayed on internal retries",
    )
    payload_hash: str = Field(
        default="",
        description="SHA-256 hash of the canonical payload",
        examples=["a1b2c3d4e5f6..."],
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EVENT_STATUSES
