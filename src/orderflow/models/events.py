"""Inbound event descriptor and the typed order event variants.

The transport hands the pipeline a loosely typed ``InboundEvent``. Order
events are parsed into one variant of the ``OrderEvent`` tagged union, keyed
on ``event_type``, so each variant only carries the fields its type
guarantees.
"""

import datetime as dt
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .enums import EventType, OrderState
from .errors import InvalidEventError


class InboundEvent(BaseModel):
    """An already-authenticated event descriptor from the webhook transport."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(
        ...,
        min_length=1,
        description="Provider event ID, used as the idempotency key",
        examples=["evt_1ABC123DEF456"],
    )
    event_type: str = Field(
        ...,
        min_length=1,
        description="Event type",
        examples=["payment_succeeded", "dispute_created"],
    )
    order_id: str | None = Field(
        default=None,
        min_length=1,
        description="Order the event refers to; None for non-order events",
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.UTC),
        description="When the transport received the event",
    )

    @property
    def is_order_event(self) -> bool:
        """True if the event targets an order with a known event type."""
        return self.order_id is not None and self.event_type in _KNOWN_EVENT_TYPES

    def to_order_event(self) -> "OrderEvent":
        """Parse the descriptor into its typed variant.

        Returns:
            The OrderEvent variant for this event type.

        Raises:
            InvalidEventError: If the type is unknown, the order id is
                missing, or the payload does not match the variant.
        """
        if not self.is_order_event:
            raise InvalidEventError(
                details={"event_id": self.event_id, "event_type": self.event_type}
            )

        data = dict(self.payload)
        data.update(
            event_id=self.event_id,
            event_type=self.event_type,
            order_id=self.order_id,
            received_at=self.received_at,
        )
        try:
            return _order_event_adapter.validate_python(data)
        except ValidationError as e:
            raise InvalidEventError(
                details={
                    "event_id": self.event_id,
                    "event_type": self.event_type,
                    "errors": e.error_count(),
                }
            ) from e


class _OrderEventBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    event_id: str
    order_id: str = Field(min_length=1)
    received_at: dt.datetime

    def requested_state(self) -> OrderState | None:
        """State this event asks the order to move to, or None."""
        return None


# === Payment provider events ===


class PaymentSucceeded(_OrderEventBase):
    event_type: Literal["payment_succeeded"] = "payment_succeeded"
    payment_intent_id: str | None = None
    amount_cents: int | None = Field(default=None, ge=0)

    def requested_state(self) -> OrderState | None:
        return OrderState.PAID


class PaymentFailed(_OrderEventBase):
    """A failed charge attempt. The buyer may retry, so the order stays put."""

    event_type: Literal["payment_failed"] = "payment_failed"
    failure_code: str | None = None
    failure_message: str | None = None


class PaymentCanceled(_OrderEventBase):
    event_type: Literal["payment_canceled"] = "payment_canceled"
    cancellation_reason: str | None = None

    def requested_state(self) -> OrderState | None:
        return OrderState.CANCELLED


class DisputeCreated(_OrderEventBase):
    event_type: Literal["dispute_created"] = "dispute_created"
    dispute_id: str
    reason: str | None = None


class DisputeClosed(_OrderEventBase):
    """A closed dispute. ``lost`` means the buyer won and funds went back."""

    event_type: Literal["dispute_closed"] = "dispute_closed"
    dispute_id: str
    dispute_status: str

    def requested_state(self) -> OrderState | None:
        if self.dispute_status == "lost":
            return OrderState.REFUNDED
        return None


class Refunded(_OrderEventBase):
    event_type: Literal["refunded"] = "refunded"
    amount_refunded_cents: int | None = Field(default=None, ge=0)

    def requested_state(self) -> OrderState | None:
        return OrderState.REFUNDED


# === Marketplace fulfillment events ===


class HandoverReady(_OrderEventBase):
    event_type: Literal["handover_ready"] = "handover_ready"

    def requested_state(self) -> OrderState | None:
        return OrderState.READY_FOR_HANDOVER


class ShipmentDispatched(_OrderEventBase):
    event_type: Literal["shipment_dispatched"] = "shipment_dispatched"
    carrier: str | None = None
    tracking_number: str | None = None

    def requested_state(self) -> OrderState | None:
        return OrderState.SHIPPED


class DeliveryConfirmed(_OrderEventBase):
    event_type: Literal["delivery_confirmed"] = "delivery_confirmed"

    def requested_state(self) -> OrderState | None:
        return OrderState.DELIVERED


class FundsReleased(_OrderEventBase):
    event_type: Literal["funds_released"] = "funds_released"

    def requested_state(self) -> OrderState | None:
        return OrderState.RELEASED


class OrderCancelled(_OrderEventBase):
    event_type: Literal["order_cancelled"] = "order_cancelled"
    reason: str | None = None

    def requested_state(self) -> OrderState | None:
        return OrderState.CANCELLED


OrderEvent = Annotated[
    Union[
        PaymentSucceeded,
        PaymentFailed,
        PaymentCanceled,
        DisputeCreated,
        DisputeClosed,
        Refunded,
        HandoverReady,
        ShipmentDispatched,
        DeliveryConfirmed,
        FundsReleased,
        OrderCancelled,
    ],
    Field(discriminator="event_type"),
]

_order_event_adapter: TypeAdapter[OrderEvent] = TypeAdapter(OrderEvent)

_KNOWN_EVENT_TYPES: frozenset[str] = frozenset(t.value for t in EventType)
