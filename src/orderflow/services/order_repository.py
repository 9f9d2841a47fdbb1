"""Order aggregate repository with optimistic version checks.

Every state write is conditional on the version the caller loaded. A failed
condition means another writer committed first; the caller has to reload
and re-validate against the new state rather than repeat the same write.
This backstops the per-order lock against any code path that bypasses it.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from orderflow.models import (
    Order,
    OrderNotFoundError,
    OrderState,
    OrderWrite,
    TransitionResult,
)
from orderflow.services.tables import ORDERS_TABLE
from orderflow.utils.clock import from_iso, to_iso, utc_now
from orderflow.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


class OrderRepository:
    """Loads and persists Order aggregates."""

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize order repository.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def create(self, order_id: str, now: dt.datetime | None = None) -> Order:
        """Create an order at ``pending_payment`` with version 0.

        Creation is idempotent: if the order already exists it is returned
        unchanged.

        Args:
            order_id: Order ID
            now: Creation time (defaults to utc_now())

        Returns:
            The new or existing Order
        """
        now = now or utc_now()
        item: dict[str, Any] = {
            "order_id": order_id,
            "state": OrderState.PENDING_PAYMENT.value,
            "version": 0,
            "created_at": to_iso(now),
            "updated_at": to_iso(now),
        }
        created = self.db.put_item(
            ORDERS_TABLE,
            item,
            condition_expression="attribute_not_exists(order_id)",
        )
        if not created:
            logger.info("Order %s already exists, returning existing row", order_id)
            return self.load(order_id)

        logger.info("Created order %s at %s", order_id, OrderState.PENDING_PAYMENT.value)
        return self._item_to_order(item)

    def get(self, order_id: str) -> Order | None:
        """Get an order by ID, or None if it does not exist."""
        item = self.db.get_item(ORDERS_TABLE, {"order_id": order_id})
        return self._item_to_order(item) if item else None

    def load(self, order_id: str) -> Order:
        """Load an order with its current version.

        Raises:
            OrderNotFoundError: If the order does not exist.
        """
        order = self.get(order_id)
        if order is None:
            raise OrderNotFoundError(details={"order_id": order_id})
        return order

    def apply_transition(
        self,
        order_id: str,
        expected_version: int,
        new_state: OrderState,
        event_id: str | None = None,
        now: dt.datetime | None = None,
    ) -> OrderWrite:
        """Write a new state if the order is still at ``expected_version``.

        Args:
            order_id: Order ID
            expected_version: Version the caller loaded and validated against
            new_state: State to move to
            event_id: Event causing the transition, recorded on the order
            now: Transition time (defaults to utc_now())

        Returns:
            OrderWrite with APPLIED and the updated order, or VERSION_CONFLICT
        """
        now = now or utc_now()
        update_expression = (
            "SET #state = :state, #version = :new_version, updated_at = :now"
        )
        values: dict[str, Any] = {
            ":state": new_state.value,
            ":expected": expected_version,
            ":new_version": expected_version + 1,
            ":now": to_iso(now),
        }
        if event_id:
            update_expression += ", last_event_id = :event_id ADD applied_event_ids :event_ids"
            values[":event_id"] = event_id
            values[":event_ids"] = {event_id}

        attrs = self.db.update_item(
            ORDERS_TABLE,
            {"order_id": order_id},
            update_expression,
            values,
            {"#state": "state", "#version": "version"},  # reserved words
            condition_expression="attribute_exists(order_id) AND #version = :expected",
        )
        if attrs is None:
            logger.info(
                "Version conflict on order %s (expected version %d)",
                order_id,
                expected_version,
            )
            return OrderWrite(result=TransitionResult.VERSION_CONFLICT)

        return OrderWrite(result=TransitionResult.APPLIED, order=self._item_to_order(attrs))

    def _item_to_order(self, item: dict[str, Any]) -> Order:
        """Convert DynamoDB item to Order model."""
        return Order(
            order_id=item["order_id"],
            state=OrderState(item["state"]),
            version=int(item.get("version", 0)),
            created_at=from_iso(item["created_at"]),
            updated_at=from_iso(item["updated_at"]),
            last_event_id=item.get("last_event_id"),
            applied_event_ids=frozenset(item.get("applied_event_ids", set())),
        )
