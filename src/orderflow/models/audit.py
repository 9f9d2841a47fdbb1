"""Audit record model."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import AuditAction, OrderState


def _new_audit_id() -> str:
    return f"AUD-{uuid.uuid4().hex.upper()}"


class AuditRecord(BaseModel):
    """Append-only fact about one processing attempt."""

    model_config = ConfigDict(strict=True, frozen=True)

    audit_id: str = Field(default_factory=_new_audit_id)
    action: AuditAction
    event_id: str
    order_id: str | None = None
    resulting_state: OrderState | None = Field(
        default=None,
        description="Order state after the attempt, when known",
    )
    timestamp: datetime
    detail: dict[str, Any] = Field(default_factory=dict)
