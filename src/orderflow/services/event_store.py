"""Event store: the durable, deduplicating log of every event ever seen.

The conditional insert is the dedup test. There is no read-then-insert
window: two concurrent deliveries of the same event race on the insert and
exactly one of them wins. The row is written before any order mutation, so
a crash between dedup and the order write leaves a ``received`` or
``processing`` row that a later delivery can reclaim.
"""

import datetime as dt
import hashlib
import json
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from orderflow.models import (
    EventRecord,
    EventStatus,
    EventType,
    ErrorCode,
    InboundEvent,
    RecordResult,
    RecordStatus,
)
from orderflow.services.tables import EVENT_KEYS_TABLE, EVENT_STATUS_INDEX, EVENTS_TABLE
from orderflow.utils.clock import from_iso, to_iso, utc_now
from orderflow.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

# Event types whose (order_id, event_type, event_id) triple is also unique
ORDER_SCOPED_EVENT_TYPES: frozenset[str] = frozenset(t.value for t in EventType)


def canonical_payload(payload: dict[str, Any]) -> str:
    """Serialize a payload to canonical JSON (sorted keys)."""
    return json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))


def compute_payload_hash(payload_json: str) -> str:
    """Compute the SHA-256 hash of a canonical payload."""
    return hashlib.sha256(payload_json.encode()).hexdigest()


def idempotency_key(order_id: str, event_type: str, event_id: str) -> str:
    """Build the order-scoped idempotency key."""
    return f"{order_id}#{event_type}#{event_id}"


class EventStore:
    """Records events and tracks their processing status."""

    def __init__(
        self,
        db: "DynamoDBService",
        stale_processing_seconds: int = 300,
    ) -> None:
        """Initialize event store.

        Args:
            db: DynamoDB service instance
            stale_processing_seconds: Age after which a ``processing`` row
                is considered abandoned and may be reclaimed
        """
        self.db = db
        self.stale_processing_seconds = stale_processing_seconds

    # === Dedup gate ===

    def record(self, event: InboundEvent, now: dt.datetime | None = None) -> RecordResult:
        """Record an inbound event and claim it for processing.

        Args:
            event: The inbound event descriptor
            now: Current time (defaults to utc_now())

        Returns:
            RecordResult. FIRST_SEEN and REDELIVERY mean the caller owns
            the event (its row is now ``processing``); DUPLICATE means it
            already reached a terminal status; IN_FLIGHT means another
            worker is processing it right now.
        """
        now = now or utc_now()
        payload_json = canonical_payload(event.payload)

        item: dict[str, Any] = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "status": EventStatus.RECEIVED.value,
            "received_at": to_iso(event.received_at),
            "updated_at": to_iso(now),
            "retry_count": 0,
            "payload": payload_json,
            "payload_hash": compute_payload_hash(payload_json),
        }
        if event.order_id:
            item["order_id"] = event.order_id

        if self._insert(item):
            claimed = self.claim(event.event_id, now)
            if claimed is None:
                # Another worker reclaimed the row between insert and claim
                return RecordResult(
                    status=RecordStatus.IN_FLIGHT, record=self._item_to_record(item)
                )
            return RecordResult(status=RecordStatus.FIRST_SEEN, record=claimed)

        existing = self.get(event.event_id)
        if existing is None:
            # Idempotency key exists without its event row
            logger.warning(
                "Idempotency key for %s exists without an event row", event.event_id
            )
            return RecordResult(
                status=RecordStatus.DUPLICATE, record=self._item_to_record(item)
            )

        if existing.is_terminal:
            return RecordResult(status=RecordStatus.DUPLICATE, record=existing)

        claimed = self.claim(event.event_id, now)
        if claimed is not None:
            return RecordResult(status=RecordStatus.REDELIVERY, record=claimed)
        return RecordResult(status=RecordStatus.IN_FLIGHT, record=existing)

    def _insert(self, item: dict[str, Any]) -> bool:
        """Insert a new event row; False if the event was already recorded."""
        order_id = item.get("order_id")
        if order_id and item["event_type"] in ORDER_SCOPED_EVENT_TYPES:
            key_item = {
                "idempotency_key": idempotency_key(
                    order_id, item["event_type"], item["event_id"]
                ),
                "event_id": item["event_id"],
                "order_id": order_id,
                "event_type": item["event_type"],
                "created_at": item["updated_at"],
            }
            return self.db.transact_write(
                [
                    self.db.conditional_put(
                        EVENTS_TABLE, item, "attribute_not_exists(event_id)"
                    ),
                    self.db.conditional_put(
                        EVENT_KEYS_TABLE, key_item, "attribute_not_exists(idempotency_key)"
                    ),
                ]
            )

        return self.db.put_item(
            EVENTS_TABLE,
            item,
            condition_expression="attribute_not_exists(event_id)",
        )

    def claim(self, event_id: str, now: dt.datetime | None = None) -> EventRecord | None:
        """Move a claimable row to ``processing``.

        Claimable rows are ``received``, ``retry_scheduled`` and
        ``processing`` rows that have not been touched for
        ``stale_processing_seconds``.

        Returns:
            The claimed record, or None if the row is not claimable.
        """
        now = now or utc_now()
        stale_cutoff = now - dt.timedelta(seconds=self.stale_processing_seconds)
        attrs = self.db.update_item(
            EVENTS_TABLE,
            {"event_id": event_id},
            "SET #status = :processing, updated_at = :now",
            {
                ":processing": EventStatus.PROCESSING.value,
                ":received": EventStatus.RECEIVED.value,
                ":retry": EventStatus.RETRY_SCHEDULED.value,
                ":now": to_iso(now),
                ":stale": to_iso(stale_cutoff),
            },
            {"#status": "status"},  # status is reserved word
            condition_expression=(
                "#status IN (:received, :retry) "
                "OR (#status = :processing AND updated_at < :stale)"
            ),
        )
        return self._item_to_record(attrs) if attrs else None

    # === Lifecycle writers ===

    def mark_applied(
        self, event_id: str, now: dt.datetime | None = None
    ) -> EventRecord | None:
        """Mark an event as applied."""
        now = now or utc_now()
        return self._finish(
            event_id,
            EventStatus.APPLIED,
            now,
            "SET #status = :status, processed_at = :now, updated_at = :now "
            "REMOVE error_code, error_message, next_attempt_at",
            {},
        )

    def mark_skipped(
        self, event_id: str, reason: str, now: dt.datetime | None = None
    ) -> EventRecord | None:
        """Mark an event as skipped (recorded, no order transition)."""
        now = now or utc_now()
        return self._finish(
            event_id,
            EventStatus.SKIPPED,
            now,
            "SET #status = :status, processed_at = :now, updated_at = :now, "
            "error_message = :message REMOVE next_attempt_at",
            {":message": reason},
        )

    def mark_rejected(
        self,
        event_id: str,
        error_code: ErrorCode,
        message: str,
        now: dt.datetime | None = None,
    ) -> EventRecord | None:
        """Mark an event as permanently rejected by a business rule."""
        now = now or utc_now()
        return self._finish(
            event_id,
            EventStatus.REJECTED,
            now,
            "SET #status = :status, processed_at = :now, updated_at = :now, "
            "error_code = :code, error_message = :message REMOVE next_attempt_at",
            {":code": error_code.value, ":message": message},
        )

    def schedule_retry(
        self,
        event_id: str,
        retry_count: int,
        next_attempt_at: dt.datetime,
        error_code: ErrorCode,
        message: str,
        now: dt.datetime | None = None,
    ) -> EventRecord | None:
        """Record a transient failure and schedule the next attempt."""
        now = now or utc_now()
        return self._finish(
            event_id,
            EventStatus.RETRY_SCHEDULED,
            now,
            "SET #status = :status, updated_at = :now, retry_count = :retries, "
            "next_attempt_at = :next, error_code = :code, error_message = :message",
            {
                ":retries": retry_count,
                ":next": to_iso(next_attempt_at),
                ":code": error_code.value,
                ":message": message,
            },
        )

    def mark_exhausted(
        self,
        event_id: str,
        retry_count: int,
        error_code: ErrorCode,
        message: str,
        now: dt.datetime | None = None,
    ) -> EventRecord | None:
        """Move an event to the terminal dead-letter status."""
        now = now or utc_now()
        return self._finish(
            event_id,
            EventStatus.EXHAUSTED,
            now,
            "SET #status = :status, processed_at = :now, updated_at = :now, "
            "retry_count = :retries, error_code = :code, error_message = :message "
            "REMOVE next_attempt_at",
            {
                ":retries": retry_count,
                ":code": error_code.value,
                ":message": message,
            },
        )

    def _finish(
        self,
        event_id: str,
        status: EventStatus,
        now: dt.datetime,
        update_expression: str,
        values: dict[str, Any],
    ) -> EventRecord | None:
        """Write a status change for a row this worker has claimed."""
        attrs = self.db.update_item(
            EVENTS_TABLE,
            {"event_id": event_id},
            update_expression,
            {
                ":status": status.value,
                ":processing": EventStatus.PROCESSING.value,
                ":now": to_iso(now),
                **values,
            },
            {"#status": "status"},
            condition_expression="#status = :processing",
        )
        if attrs is None:
            logger.warning(
                "Event %s was no longer processing when marking it %s",
                event_id,
                status.value,
            )
            return None
        return self._item_to_record(attrs)

    # === Reconciliation queries ===

    def get(self, event_id: str) -> EventRecord | None:
        """Get an event row by ID."""
        item = self.db.get_item(EVENTS_TABLE, {"event_id": event_id})
        return self._item_to_record(item) if item else None

    def list_by_status(self, status: EventStatus) -> list[EventRecord]:
        """List events in a status, oldest first."""
        items = self.db.query_by_gsi(
            EVENTS_TABLE,
            EVENT_STATUS_INDEX,
            "status",
            status.value,
        )
        return [self._item_to_record(item) for item in items]

    def list_due_retries(self, now: dt.datetime | None = None) -> list[EventRecord]:
        """List ``retry_scheduled`` events whose next attempt is due."""
        now = now or utc_now()
        items = self.db.query_by_gsi(
            EVENTS_TABLE,
            EVENT_STATUS_INDEX,
            "status",
            EventStatus.RETRY_SCHEDULED.value,
            filter_expression=Attr("next_attempt_at").lte(to_iso(now)),
        )
        return [self._item_to_record(item) for item in items]

    def list_exhausted(self) -> list[EventRecord]:
        """List events awaiting manual reconciliation."""
        return self.list_by_status(EventStatus.EXHAUSTED)

    def _item_to_record(self, item: dict[str, Any]) -> EventRecord:
        """Convert DynamoDB item to EventRecord model."""
        return EventRecord(
            event_id=item["event_id"],
            event_type=item["event_type"],
            order_id=item.get("order_id"),
            status=EventStatus(item["status"]),
            received_at=from_iso(item["received_at"]),
            processed_at=(
                from_iso(item["processed_at"]) if item.get("processed_at") else None
            ),
            updated_at=from_iso(item["updated_at"]),
            retry_count=int(item.get("retry_count", 0)),
            next_attempt_at=(
                from_iso(item["next_attempt_at"]) if item.get("next_attempt_at") else None
            ),
            error_code=ErrorCode(item["error_code"]) if item.get("error_code") else None,
            error_message=item.get("error_message"),
            payload=item.get("payload", "{}"),
            payload_hash=item.get("payload_hash", ""),
        )
