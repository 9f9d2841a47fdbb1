"""Append-only audit log of processing attempts.

Written once per attempt by the event processor and never read by the hot
path. The read methods exist for reconciliation and tests.
"""

import json
from typing import TYPE_CHECKING, Any

from orderflow.models import AuditAction, AuditRecord, OrderState, PipelineError
from orderflow.services.tables import AUDIT_EVENT_INDEX, AUDIT_ORDER_INDEX, AUDIT_TABLE
from orderflow.utils.clock import from_iso, to_iso
from orderflow.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class AuditLog:
    """Service for appending and querying audit records."""

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize audit log.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def append(self, record: AuditRecord) -> AuditRecord:
        """Append an audit record.

        Records are immutable: the put is conditional on a fresh audit_id,
        so an existing record is never overwritten.

        Raises:
            PipelineError: If a record with the same audit_id already exists.
        """
        item: dict[str, Any] = {
            "audit_id": record.audit_id,
            "action": record.action.value,
            "event_id": record.event_id,
            "timestamp": to_iso(record.timestamp),
            "detail": json.dumps(record.detail, sort_keys=True, default=str),
        }
        # GSI key attributes cannot be null
        if record.order_id:
            item["order_id"] = record.order_id
        if record.resulting_state:
            item["resulting_state"] = record.resulting_state.value

        if not self.db.put_item(
            AUDIT_TABLE, item, condition_expression="attribute_not_exists(audit_id)"
        ):
            raise PipelineError(details={"audit_id": record.audit_id, "reason": "exists"})

        logger.debug(
            "Audit %s: %s event=%s order=%s",
            record.audit_id,
            record.action.value,
            record.event_id,
            record.order_id,
        )
        return record

    def list_for_event(self, event_id: str) -> list[AuditRecord]:
        """All audit records for an event, oldest first."""
        items = self.db.query_by_gsi(AUDIT_TABLE, AUDIT_EVENT_INDEX, "event_id", event_id)
        return [self._item_to_record(item) for item in items]

    def list_for_order(self, order_id: str) -> list[AuditRecord]:
        """All audit records for an order, oldest first."""
        items = self.db.query_by_gsi(AUDIT_TABLE, AUDIT_ORDER_INDEX, "order_id", order_id)
        return [self._item_to_record(item) for item in items]

    def count_actions(self, event_id: str) -> dict[AuditAction, int]:
        """Count audit records for an event by action."""
        counts: dict[AuditAction, int] = {}
        for record in self.list_for_event(event_id):
            counts[record.action] = counts.get(record.action, 0) + 1
        return counts

    def _item_to_record(self, item: dict[str, Any]) -> AuditRecord:
        """Convert DynamoDB item to AuditRecord model."""
        return AuditRecord(
            audit_id=item["audit_id"],
            action=AuditAction(item["action"]),
            event_id=item["event_id"],
            order_id=item.get("order_id"),
            resulting_state=(
                OrderState(item["resulting_state"]) if item.get("resulting_state") else None
            ),
            timestamp=from_iso(item["timestamp"]),
            detail=json.loads(item.get("detail", "{}")),
        )
