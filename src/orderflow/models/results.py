"""Result models returned by pipeline components.

The outcome-to-status mapping follows what the upstream provider expects
when it replays a webhook:
- 200: done (applied, skipped or an idempotent replay), stop redelivering
- 409: permanent business rejection, stop redelivering
- 503: transient failure, redeliver later
- 500: retry budget spent, escalated for manual reconciliation
"""

from http import HTTPStatus

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .enums import OrderState, ProcessingOutcome, RecordStatus, TransitionResult
from .errors import ErrorCode
from .event_record import EventRecord
from .order import Order

# Map ProcessingOutcome to the status code reported to the calling transport
OUTCOME_TO_HTTP_STATUS: dict[ProcessingOutcome, int] = {
    ProcessingOutcome.DUPLICATE: HTTPStatus.OK,
    ProcessingOutcome.APPLIED: HTTPStatus.OK,
    ProcessingOutcome.SKIPPED: HTTPStatus.OK,
    ProcessingOutcome.REJECTED: HTTPStatus.CONFLICT,
    ProcessingOutcome.RETRY_SCHEDULED: HTTPStatus.SERVICE_UNAVAILABLE,
    ProcessingOutcome.EXHAUSTED: HTTPStatus.INTERNAL_SERVER_ERROR,
}


def get_http_status_for_outcome(outcome: ProcessingOutcome) -> int:
    """Get the HTTP status code for a processing outcome.

    Args:
        outcome: The outcome to map

    Returns:
        HTTP status code, 500 if the outcome is not mapped.
    """
    return int(OUTCOME_TO_HTTP_STATUS.get(outcome, HTTPStatus.INTERNAL_SERVER_ERROR))


class ProcessingResult(BaseModel):
    """Outcome of one pipeline attempt for one event."""

    model_config = ConfigDict(strict=True)

    event_id: str
    event_type: str
    outcome: ProcessingOutcome
    order_id: str | None = None
    order_state: OrderState | None = Field(
        default=None,
        description="Order state after the attempt, when known",
    )
    order_version: int | None = None
    retry_count: int = 0
    error_code: ErrorCode | None = None
    message: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def http_status(self) -> int:
        return get_http_status_for_outcome(self.outcome)

    @property
    def retryable(self) -> bool:
        return self.outcome == ProcessingOutcome.RETRY_SCHEDULED


class RecordResult(BaseModel):
    """Result of recording an event in the event store."""

    model_config = ConfigDict(strict=True)

    status: RecordStatus
    record: EventRecord

    @property
    def should_process(self) -> bool:
        """True if the caller now owns the event and must process it."""
        return self.status in (RecordStatus.FIRST_SEEN, RecordStatus.REDELIVERY)


class OrderWrite(BaseModel):
    """Result of a conditional order state write."""

    model_config = ConfigDict(strict=True)

    result: TransitionResult
    order: Order | None = Field(
        default=None,
        description="The order after the write; None on version conflict",
    )

    @property
    def applied(self) -> bool:
        return self.result == TransitionResult.APPLIED


class OutcomeNotification(BaseModel):
    """Fire-and-forget message for notification and KPI collaborators."""

    model_config = ConfigDict(frozen=True)

    order_id: str | None
    event_id: str
    event_type: str
    outcome: ProcessingOutcome
    order_state: OrderState | None = None
    error_code: ErrorCode | None = None
