"""Integration tests for the event pipeline against mocked DynamoDB.

Each test runs the full EventProcessor: event store, per-order lock,
repository, validator, audit log and notification sink.

Test categories:
- Duplicate delivery of a payment (idempotent replay)
- Stale payment after the order moved on (rejected)
- Dispute and stale payment racing for one order
- Storage outage exhausting the retry budget
- Full fulfillment lifecycle
- Skipped events
"""

from typing import Callable
from unittest.mock import patch

from orderflow.models import (
    ERROR_RECOVERY,
    AuditAction,
    ErrorCode,
    EventStatus,
    InboundEvent,
    Order,
    OrderState,
    ProcessingOutcome,
    RetriesExhaustedError,
    StorageUnavailableError,
)
from orderflow.services.audit_log import AuditLog
from orderflow.services.event_processor import EventProcessor
from orderflow.services.event_store import EventStore
from orderflow.services.order_repository import OrderRepository


# === Scenario 1: duplicate payment delivery ===


class TestDuplicatePaymentDelivery:
    def test_payment_applied_once(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        audit_log: AuditLog,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.PENDING_PAYMENT)
        event = make_event("payment_succeeded", "evt_1", amount_cents=4500)

        first = processor.process(event)
        second = processor.process(event)

        assert first.outcome == ProcessingOutcome.APPLIED
        assert first.http_status == 200
        assert first.order_state == OrderState.PAID
        assert first.order_version == 1
        assert second.outcome == ProcessingOutcome.DUPLICATE
        assert second.http_status == 200

        order = order_repository.load("ORD-1001")
        assert order.state == OrderState.PAID
        assert order.version == 1
        assert audit_log.count_actions("evt_1") == {
            AuditAction.APPLIED: 1,
            AuditAction.DUPLICATE: 1,
        }

    def test_applied_notification_sent_once(
        self,
        processor: EventProcessor,
        sink,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()
        event = make_event("payment_succeeded", "evt_1")

        processor.process(event)
        processor.process(event)

        assert [n.outcome for n in sink.notifications] == [ProcessingOutcome.APPLIED]
        assert sink.notifications[0].order_state == OrderState.PAID


# === Scenario 2: payment for an already paid order ===


class TestStalePaymentRejected:
    def test_second_payment_with_new_id_is_rejected(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        event_store: EventStore,
        audit_log: AuditLog,
        sink,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.PAID, version=1)

        result = processor.process(make_event("payment_succeeded", "evt_new"))

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.http_status == 409
        assert result.error_code == ErrorCode.ILLEGAL_TRANSITION
        assert result.order_state == OrderState.PAID

        order = order_repository.load("ORD-1001")
        assert order.state == OrderState.PAID
        assert order.version == 1

        record = event_store.get("evt_new")
        assert record.status == EventStatus.REJECTED
        assert record.error_code == ErrorCode.ILLEGAL_TRANSITION

        audits = audit_log.list_for_event("evt_new")
        assert [a.action for a in audits] == [AuditAction.REJECTED]
        assert audits[0].detail["current_state"] == "paid"
        assert audits[0].detail["requested_state"] == "paid"
        assert audits[0].detail["recovery"] == ERROR_RECOVERY[ErrorCode.ILLEGAL_TRANSITION]
        assert [n.outcome for n in sink.notifications] == [ProcessingOutcome.REJECTED]

    def test_rejected_event_is_not_retried_on_redelivery(
        self,
        processor: EventProcessor,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.REFUNDED, version=2)
        event = make_event("payment_succeeded", "evt_late")

        processor.process(event)
        again = processor.process(event)

        assert again.outcome == ProcessingOutcome.DUPLICATE


# === Scenario 3: dispute and stale payment for one order ===


class TestDisputeAndStalePayment:
    def test_sequential_delivery(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        audit_log: AuditLog,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.PAID, version=1)

        dispute = processor.process(make_event("dispute_created", "evt_2", dispute_id="dp_1"))
        clock.advance(seconds=1)
        stale = processor.process(make_event("payment_succeeded", "evt_3"))

        assert dispute.outcome == ProcessingOutcome.SKIPPED
        assert stale.outcome == ProcessingOutcome.REJECTED

        order = order_repository.load("ORD-1001")
        assert order.state == OrderState.PAID
        assert order.version == 1
        assert [a.action for a in audit_log.list_for_order("ORD-1001")] == [
            AuditAction.SKIPPED,
            AuditAction.REJECTED,
        ]

    def test_lost_dispute_refunds_then_payment_is_rejected(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.PAID, version=1)

        closed = processor.process(
            make_event("dispute_closed", "evt_4", dispute_id="dp_1", dispute_status="lost")
        )
        clock.advance(seconds=1)
        stale = processor.process(make_event("payment_succeeded", "evt_5"))

        assert closed.outcome == ProcessingOutcome.APPLIED
        assert closed.order_state == OrderState.REFUNDED
        assert stale.outcome == ProcessingOutcome.REJECTED

        order = order_repository.load("ORD-1001")
        assert order.state == OrderState.REFUNDED
        assert order.version == 2


# === Scenario 4: storage outage ===


class TestStorageOutageExhaustsRetries:
    def test_three_retries_then_exhausted(
        self,
        processor: EventProcessor,
        event_store: EventStore,
        audit_log: AuditLog,
        sink,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()
        event = make_event("payment_succeeded", "evt_1")

        with patch.object(
            OrderRepository,
            "load",
            side_effect=StorageUnavailableError(details={"operation": "get_item"}),
        ):
            results = []
            for _ in range(4):
                results.append(processor.process(event))
                clock.advance(minutes=5)

        assert [r.outcome for r in results] == [
            ProcessingOutcome.RETRY_SCHEDULED,
            ProcessingOutcome.RETRY_SCHEDULED,
            ProcessingOutcome.RETRY_SCHEDULED,
            ProcessingOutcome.EXHAUSTED,
        ]
        assert [r.retry_count for r in results] == [1, 2, 3, 3]
        assert [r.http_status for r in results] == [503, 503, 503, 500]
        assert results[-1].error_code == ErrorCode.RETRIES_EXHAUSTED
        assert results[-1].message == str(
            RetriesExhaustedError(
                details={
                    "retry_count": 3,
                    "last_error_code": ErrorCode.STORAGE_UNAVAILABLE.value,
                }
            )
        )

        assert audit_log.count_actions("evt_1") == {
            AuditAction.RETRY_SCHEDULED: 3,
            AuditAction.EXHAUSTED: 1,
        }
        record = event_store.get("evt_1")
        assert record.status == EventStatus.EXHAUSTED
        assert record.retry_count == 3
        assert record.error_code == ErrorCode.STORAGE_UNAVAILABLE
        assert [r.event_id for r in event_store.list_exhausted()] == ["evt_1"]
        assert [n.outcome for n in sink.notifications] == [ProcessingOutcome.EXHAUSTED]

    def test_exhausted_event_is_never_retried_again(
        self,
        processor: EventProcessor,
        audit_log: AuditLog,
        clock,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()
        event = make_event("payment_succeeded", "evt_1")

        with patch.object(OrderRepository, "load", side_effect=StorageUnavailableError()):
            for _ in range(4):
                processor.process(event)
                clock.advance(minutes=5)

        after = processor.process(event)

        assert after.outcome == ProcessingOutcome.DUPLICATE
        assert processor.process_due_retries(clock.advance(hours=1)) == []
        assert audit_log.count_actions("evt_1")[AuditAction.EXHAUSTED] == 1


# === Full lifecycle ===


class TestFulfillmentLifecycle:
    def test_order_moves_through_every_state(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        audit_log: AuditLog,
        clock,
        make_event: Callable[..., InboundEvent],
    ):
        order_repository.create("ORD-1001", clock())
        steps = [
            ("payment_succeeded", OrderState.PAID),
            ("handover_ready", OrderState.READY_FOR_HANDOVER),
            ("shipment_dispatched", OrderState.SHIPPED),
            ("delivery_confirmed", OrderState.DELIVERED),
            ("funds_released", OrderState.RELEASED),
        ]

        for index, (event_type, expected_state) in enumerate(steps, start=1):
            clock.advance(seconds=1)
            result = processor.process(make_event(event_type, f"evt_{index}"))
            assert result.outcome == ProcessingOutcome.APPLIED
            assert result.order_state == expected_state
            assert result.order_version == index

        order = order_repository.load("ORD-1001")
        assert order.state == OrderState.RELEASED
        assert order.version == len(steps)
        assert order.last_event_id == "evt_5"
        assert len(audit_log.list_for_order("ORD-1001")) == len(steps)

    def test_cancel_from_shipped(
        self,
        processor: EventProcessor,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.SHIPPED, version=3)

        result = processor.process(make_event("order_cancelled", "evt_c", reason="buyer"))

        assert result.outcome == ProcessingOutcome.APPLIED
        assert result.order_state == OrderState.CANCELLED
        assert result.order_version == 4

    def test_refund_after_shipping_is_rejected(
        self,
        processor: EventProcessor,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at(OrderState.SHIPPED, version=3)

        result = processor.process(make_event("refunded", "evt_r"))

        assert result.outcome == ProcessingOutcome.REJECTED


# === Skipped events ===


class TestSkippedEvents:
    def test_event_without_order_is_skipped(
        self,
        processor: EventProcessor,
        event_store: EventStore,
        audit_log: AuditLog,
        make_event: Callable[..., InboundEvent],
    ):
        result = processor.process(make_event("payment_succeeded", "evt_x", order_id=None))

        assert result.outcome == ProcessingOutcome.SKIPPED
        assert result.http_status == 200
        assert event_store.get("evt_x").status == EventStatus.SKIPPED
        assert [a.action for a in audit_log.list_for_event("evt_x")] == [AuditAction.SKIPPED]

    def test_unknown_event_type_is_skipped(
        self,
        processor: EventProcessor,
        make_event: Callable[..., InboundEvent],
    ):
        result = processor.process(make_event("customer.updated", "evt_u"))

        assert result.outcome == ProcessingOutcome.SKIPPED
        assert "customer.updated" in result.message

    def test_payment_failed_leaves_order_pending(
        self,
        processor: EventProcessor,
        order_repository: OrderRepository,
        sink,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()

        result = processor.process(
            make_event("payment_failed", "evt_f", failure_code="card_declined")
        )

        assert result.outcome == ProcessingOutcome.SKIPPED
        assert order_repository.load("ORD-1001").version == 0
        assert sink.notifications == []

    def test_invalid_payload_is_rejected(
        self,
        processor: EventProcessor,
        event_store: EventStore,
        order_at: Callable[..., Order],
        make_event: Callable[..., InboundEvent],
    ):
        order_at()

        result = processor.process(make_event("dispute_created", "evt_bad"))

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.error_code == ErrorCode.INVALID_EVENT
        assert event_store.get("evt_bad").error_code == ErrorCode.INVALID_EVENT
