"""Integration tests for exactly-once application and transition legality.

Test categories:
- Repeated deliveries of one event
- Illegal transitions leave the order untouched
- Version monotonicity across a lifecycle
- Crash recovery when the order write landed but the event row did not
"""

import itertools
from typing import Callable

import pytest

from orderflow.models import (
    AuditAction,
    EventStatus,
    InboundEvent,
    Order,
    OrderState,
    ProcessingOutcome,
)
from orderflow.services.audit_log import AuditLog
from orderflow.services.event_processor import EventProcessor
from orderflow.services.event_store import EventStore
from orderflow.services.order_repository import OrderRepository
from orderflow.services.state_machine import allowed

# Event type requesting each state; None where no event asks for it
EVENT_FOR_STATE: dict[OrderState, tuple[str, dict]] = {
    OrderState.PAID: ("payment_succeeded", {}),
    OrderState.READY_FOR_HANDOVER: ("handover_ready", {}),
    OrderState.SHIPPED: ("shipment_dispatched", {"carrier": "posten"}),
    OrderState.DELIVERED: ("delivery_confirmed", {}),
    OrderState.RELEASED: ("funds_released", {}),
    OrderState.REFUNDED: ("refunded", {}),
    OrderState.CANCELLED: ("order_cancelled", {}),
}

DISALLOWED_PAIRS = [
    (current, requested)
    for current, requested in itertools.product(OrderState, EVENT_FOR_STATE)
    if not allowed(current, requested)
]


# === Repeated delivery ===


class TestRepeatedDelivery:
    @pytest.mark.parametrize("deliveries", [2, 5])
    def test_applied_exactly_once(
        self,
        deliveries: int,
        processor: EventProcessor,
        order_repository: OrderRepository,
        audit_log: AuditLog,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()
        event = make_event("payment_succeeded", "evt_1")

        outcomes = [processor.process(event).outcome for _ in range(deliveries)]

        assert outcomes[0] == ProcessingOutcome.APPLIED
        assert set(outcomes[1:]) == {ProcessingOutcome.DUPLICATE}
        assert order_repository.load("ORD-1001").version == 1
        assert audit_log.count_actions("evt_1") == {
            AuditAction.APPLIED: 1,
            AuditAction.DUPLICATE: deliveries - 1,
        }

    def test_redelivery_with_different_payload_is_still_duplicate(
        self,
        processor: EventProcessor,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()

        processor.process(make_event("payment_succeeded", "evt_1", amount_cents=100))
        replay = processor.process(make_event("payment_succeeded", "evt_1", amount_cents=999))

        assert replay.outcome == ProcessingOutcome.DUPLICATE

    def test_duplicate_of_skipped_event(
        self,
        processor: EventProcessor,
        event_store: EventStore,
        make_event: Callable[..., InboundEvent],
    ):
        event = make_event("customer.updated", "evt_s")

        processor.process(event)
        replay = processor.process(event)

        assert replay.outcome == ProcessingOutcome.DUPLICATE
        assert event_store.get("evt_s").status == EventStatus.SKIPPED

    def test_events_for_different_orders_do_not_interfere(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(order_id="ORD-A")
        order_at(order_id="ORD-B")

        a = processor.process(make_event("payment_succeeded", "evt_a", order_id="ORD-A"))
        b = processor.process(make_event("payment_succeeded", "evt_b", order_id="ORD-B"))

        assert a.outcome == b.outcome == ProcessingOutcome.APPLIED
        assert order_repository.load("ORD-A").state == OrderState.PAID
        assert order_repository.load("ORD-B").state == OrderState.PAID


# === Transition legality ===


class TestIllegalTransitions:
    @pytest.mark.parametrize(
        "current,requested",
        DISALLOWED_PAIRS,
        ids=[f"{c.value}->{r.value}" for c, r in DISALLOWED_PAIRS],
    )
    def test_illegal_transition_leaves_order_untouched(
        self,
        current: OrderState,
        requested: OrderState,
        processor: EventProcessor,
        order_repository: OrderRepository,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        before = order_at(current, version=4)
        event_type, payload = EVENT_FOR_STATE[requested]

        result = processor.process(make_event(event_type, "evt_illegal", **payload))

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.http_status == 409
        after = order_repository.load("ORD-1001")
        assert after.state == before.state
        assert after.version == before.version
        assert after.last_event_id is None


# === Versioning ===


class TestVersionMonotonicity:
    def test_version_increments_by_one_per_transition(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()
        sequence = [
            ("payment_succeeded", "evt_1"),
            ("payment_succeeded", "evt_1"),  # duplicate
            ("payment_succeeded", "evt_2"),  # rejected
            ("handover_ready", "evt_3"),
            ("refunded", "evt_4"),  # rejected
            ("order_cancelled", "evt_5"),
        ]

        versions = []
        for event_type, event_id in sequence:
            clock.advance(seconds=1)
            processor.process(make_event(event_type, event_id))
            versions.append(order_repository.load("ORD-1001").version)

        assert versions == [1, 1, 1, 2, 2, 3]
        assert order_repository.load("ORD-1001").state == OrderState.CANCELLED
        assert order_repository.load("ORD-1001").applied_event_ids == {
            "evt_1",
            "evt_3",
            "evt_5",
        }


# === Crash recovery ===


class TestCrashRecovery:
    def test_order_already_carries_event(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        event_store: EventStore,
        audit_log: AuditLog,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        """The order write committed but the worker died before marking the event."""
        order = order_at()
        order_repository.apply_transition(
            order.order_id, order.version, OrderState.PAID, event_id="evt_1", now=clock()
        )
        event_store.record(make_event("payment_succeeded", "evt_1"), clock())
        clock.advance(minutes=10)

        result = processor.process(make_event("payment_succeeded", "evt_1"))

        assert result.outcome == ProcessingOutcome.APPLIED
        assert result.order_version == 1
        assert order_repository.load("ORD-1001").version == 1
        assert event_store.get("evt_1").status == EventStatus.APPLIED
        audits = audit_log.list_for_event("evt_1")
        assert [a.action for a in audits] == [AuditAction.APPLIED]
        assert audits[0].detail["recovered"] is True

    def test_fresh_processing_row_is_in_flight(
        self,
        processor: EventProcessor,
        event_store: EventStore,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()
        event_store.record(make_event("payment_succeeded", "evt_1"), clock())
        clock.advance(seconds=30)

        result = processor.process(make_event("payment_succeeded", "evt_1"))

        assert result.outcome == ProcessingOutcome.RETRY_SCHEDULED
        assert result.http_status == 503
        assert event_store.get("evt_1").status == EventStatus.PROCESSING
