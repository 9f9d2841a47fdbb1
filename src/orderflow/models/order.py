"""Order aggregate model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import OrderState


class Order(BaseModel):
    """The payment and fulfillment aggregate of a sale.

    ``version`` is the optimistic concurrency token: it starts at 0 and is
    incremented by exactly one for every accepted state transition.
    """

    model_config = ConfigDict(strict=True)

    order_id: str = Field(..., description="Unique order ID")
    state: OrderState = Field(
        default=OrderState.PENDING_PAYMENT,
        description="Current lifecycle state",
    )
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last transition timestamp")
    last_event_id: str | None = Field(
        default=None,
        description="Event that caused the last accepted transition",
    )
    applied_event_ids: frozenset[str] = Field(
        default_factory=frozenset,
        description="Events whose transition has been committed on this order",
    )

    def has_applied(self, event_id: str) -> bool:
        return event_id in self.applied_event_ids
