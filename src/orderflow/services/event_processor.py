"""Event processor: applies inbound events to orders exactly once.

Control flow for one attempt:

1. Record the event in the event store (dedup gate). Duplicates stop here.
2. Parse the descriptor into its typed variant. Events without an order or
   without a requested state are recorded as skipped.
3. Take the per-order lock, load the order, validate the transition and
   write it conditionally on the loaded version.
4. Mark the event row, append one audit record, notify collaborators.

Failures are classified onto the error taxonomy. Permanent errors reject
the event; transient ones go to the retry coordinator, which schedules the
next attempt or exhausts the event.
"""

import datetime as dt
import json
from dataclasses import dataclass
from typing import Any

from orderflow.models import (
    AuditAction,
    AuditRecord,
    ErrorCode,
    ErrorDetail,
    EventRecord,
    InboundEvent,
    Order,
    OrderState,
    OutcomeNotification,
    PipelineError,
    ProcessingOutcome,
    ProcessingResult,
    RecordResult,
    RecordStatus,
    RetriesExhaustedError,
    VersionConflictError,
)
from orderflow.models.events import OrderEvent
from orderflow.services.audit_log import AuditLog
from orderflow.services.event_store import EventStore
from orderflow.services.notifications import NotificationSink, deliver
from orderflow.services.order_lock import LockProvider, order_lock
from orderflow.services.order_repository import OrderRepository
from orderflow.services.retry import RetryCoordinator
from orderflow.services.state_machine import require_transition
from orderflow.utils.clock import Clock, to_iso, utc_now
from orderflow.utils.logging import (
    clear_correlation_id,
    get_logger,
    log_pipeline_event,
    set_correlation_id,
)

logger = get_logger(__name__)

# Audit action for a transient failure, by cause
_TRANSIENT_AUDIT_ACTIONS: dict[ErrorCode, AuditAction] = {
    ErrorCode.LOCK_TIMEOUT: AuditAction.LOCK_TIMEOUT,
    ErrorCode.VERSION_CONFLICT: AuditAction.VERSION_CONFLICT,
}

# Outcomes that are reported to notification collaborators
_NOTIFIED_OUTCOMES = frozenset(
    {
        ProcessingOutcome.APPLIED,
        ProcessingOutcome.REJECTED,
        ProcessingOutcome.EXHAUSTED,
    }
)


@dataclass
class _Attempt:
    """Mutable context for one processing attempt."""

    inbound: InboundEvent
    record: EventRecord
    now: dt.datetime
    order: Order | None = None
    conflicts: int = 0


class EventProcessor:
    """Orchestrates the event store, lock, repository, audit log and retries."""

    def __init__(
        self,
        event_store: EventStore,
        orders: OrderRepository,
        audit_log: AuditLog,
        locks: LockProvider,
        retry: RetryCoordinator | None = None,
        notifier: NotificationSink | None = None,
        lock_timeout_seconds: float = 5.0,
        max_conflict_retries: int = 3,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the processor.

        Args:
            event_store: Event store (dedup gate and event lifecycle)
            orders: Order repository
            audit_log: Audit log
            locks: Per-order lock provider
            retry: Retry coordinator (defaults to RetryCoordinator())
            notifier: Sink for outcome notifications, optional
            lock_timeout_seconds: How long to wait for the order lock
            max_conflict_retries: Reload-and-revalidate rounds after a
                version conflict before the attempt fails
            clock: Time source
        """
        self.event_store = event_store
        self.orders = orders
        self.audit_log = audit_log
        self.locks = locks
        self.retry = retry or RetryCoordinator()
        self.notifier = notifier
        self.lock_timeout_seconds = lock_timeout_seconds
        self.max_conflict_retries = max_conflict_retries
        self._clock = clock

    # === Entry points ===

    def process(
        self, inbound: InboundEvent, now: dt.datetime | None = None
    ) -> ProcessingResult:
        """Run one pipeline attempt for an inbound event.

        Args:
            inbound: Authenticated event descriptor
            now: Attempt time (defaults to the processor clock)

        Returns:
            ProcessingResult; its ``http_status`` is what the transport
            should answer the provider with.
        """
        set_correlation_id(inbound.event_id)
        try:
            return self._process(inbound, now or self._clock())
        finally:
            clear_correlation_id()

    def process_due_retries(
        self, now: dt.datetime | None = None
    ) -> list[ProcessingResult]:
        """Replay every ``retry_scheduled`` event whose next attempt is due.

        The stored payload is replayed through ``process``, so each replay
        goes through the dedup gate and claims the row like a redelivery.
        """
        now = now or self._clock()
        due = self.event_store.list_due_retries(now)
        if due:
            logger.info("Replaying %d due retries", len(due))

        results = []
        for record in due:
            inbound = InboundEvent(
                event_id=record.event_id,
                event_type=record.event_type,
                order_id=record.order_id,
                payload=json.loads(record.payload),
                received_at=record.received_at,
            )
            results.append(self.process(inbound, now))
        return results

    # === Pipeline ===

    def _process(self, inbound: InboundEvent, now: dt.datetime) -> ProcessingResult:
        try:
            recorded = self.event_store.record(inbound, now)
        except PipelineError as e:
            # No row to schedule on; the provider has to redeliver
            self._audit(
                AuditAction.RETRY_SCHEDULED,
                inbound,
                now,
                error_code=e.code.value,
                stage="record",
                error=str(e),
            )
            return self._result(
                inbound,
                ProcessingOutcome.RETRY_SCHEDULED,
                error_code=e.code,
                message=str(e),
            )

        if not recorded.should_process:
            return self._unclaimed(inbound, recorded, now)

        attempt = _Attempt(inbound=inbound, record=recorded.record, now=now)
        if recorded.status == RecordStatus.REDELIVERY:
            logger.info(
                "Reclaimed event %s (retry %d)", inbound.event_id, recorded.record.retry_count
            )

        try:
            return self._attempt(attempt)
        except Exception as e:
            code = self.retry.classify(e)
            if self.retry.is_transient(code):
                return self._fail_transiently(attempt, code, e)
            return self._reject(attempt, code, e)

    def _unclaimed(
        self, inbound: InboundEvent, recorded: RecordResult, now: dt.datetime
    ) -> ProcessingResult:
        """Answer a delivery whose event row this worker could not claim."""
        if recorded.status == RecordStatus.DUPLICATE:
            self._audit(
                AuditAction.DUPLICATE,
                inbound,
                now,
                event_status=recorded.record.status.value,
            )
            return self._result(
                inbound,
                ProcessingOutcome.DUPLICATE,
                retry_count=recorded.record.retry_count,
                message=f"Event already {recorded.record.status.value}",
            )

        # In flight: another worker owns the row, ask the provider to redeliver
        self._audit(
            AuditAction.DUPLICATE,
            inbound,
            now,
            in_flight=True,
            event_status=recorded.record.status.value,
        )
        return self._result(
            inbound,
            ProcessingOutcome.RETRY_SCHEDULED,
            retry_count=recorded.record.retry_count,
            message="Event is being processed by another worker",
        )

    def _attempt(self, attempt: _Attempt) -> ProcessingResult:
        inbound = attempt.inbound
        if inbound.order_id is None:
            return self._skip(attempt, "Event has no order_id")
        if not inbound.is_order_event:
            return self._skip(attempt, f"Unhandled event type: {inbound.event_type}")

        event = inbound.to_order_event()
        requested = event.requested_state()
        if requested is None:
            return self._skip(
                attempt, f"{inbound.event_type} requests no order state change"
            )

        with order_lock(self.locks, inbound.order_id, self.lock_timeout_seconds):
            return self._apply(attempt, event, requested)

    def _apply(
        self, attempt: _Attempt, event: OrderEvent, requested: OrderState
    ) -> ProcessingResult:
        """Validate and write the transition. Must run under the order lock."""
        order = self.orders.load(event.order_id)
        attempt.order = order

        if order.has_applied(event.event_id):
            # A previous attempt wrote the order but not the event row
            return self._applied(attempt, order, recovered=True)

        while True:
            require_transition(order.state, requested)
            write = self.orders.apply_transition(
                order.order_id,
                order.version,
                requested,
                event_id=event.event_id,
                now=attempt.now,
            )
            if write.order is not None:
                return self._applied(attempt, write.order, previous_state=order.state)

            attempt.conflicts += 1
            if attempt.conflicts > self.max_conflict_retries:
                raise VersionConflictError(
                    details={
                        "order_id": order.order_id,
                        "expected_version": order.version,
                        "conflicts": attempt.conflicts,
                    }
                )
            order = self.orders.load(order.order_id)
            attempt.order = order

    # === Outcomes ===

    def _applied(
        self,
        attempt: _Attempt,
        order: Order,
        previous_state: OrderState | None = None,
        recovered: bool = False,
    ) -> ProcessingResult:
        inbound = attempt.inbound
        attempt.order = order
        # The order write has committed, so the outcome is applied from here on.
        # A row left in processing is reclaimed later and recovered via has_applied.
        self._write_status(self.event_store.mark_applied, inbound.event_id, attempt.now)

        detail: dict[str, Any] = {"version": order.version}
        if previous_state is not None:
            detail["previous_state"] = previous_state.value
        if attempt.conflicts:
            detail["version_conflicts"] = attempt.conflicts
        if recovered:
            detail["recovered"] = True
        self._audit(AuditAction.APPLIED, inbound, attempt.now, order.state, **detail)

        return self._result(
            inbound,
            ProcessingOutcome.APPLIED,
            order=order,
            retry_count=attempt.record.retry_count,
        )

    def _skip(self, attempt: _Attempt, reason: str) -> ProcessingResult:
        inbound = attempt.inbound
        self.event_store.mark_skipped(inbound.event_id, reason, attempt.now)
        self._audit(AuditAction.SKIPPED, inbound, attempt.now, reason=reason)
        return self._result(
            inbound,
            ProcessingOutcome.SKIPPED,
            retry_count=attempt.record.retry_count,
            message=reason,
        )

    def _reject(
        self, attempt: _Attempt, code: ErrorCode, error: Exception
    ) -> ProcessingResult:
        inbound = attempt.inbound
        message = str(error)
        self._write_status(
            self.event_store.mark_rejected, inbound.event_id, code, message, attempt.now
        )

        error_detail = (
            error.to_error_detail()
            if isinstance(error, PipelineError)
            else ErrorDetail.from_code(code)
        )
        detail: dict[str, Any] = {
            "error_code": code.value,
            "error": message,
            "recovery": error_detail.recovery,
        }
        if error_detail.details:
            detail.update(error_detail.details)
        state = attempt.order.state if attempt.order else None
        self._audit(AuditAction.REJECTED, inbound, attempt.now, state, **detail)

        return self._result(
            inbound,
            ProcessingOutcome.REJECTED,
            order=attempt.order,
            retry_count=attempt.record.retry_count,
            error_code=code,
            message=message,
        )

    def _fail_transiently(
        self, attempt: _Attempt, code: ErrorCode, error: Exception
    ) -> ProcessingResult:
        inbound = attempt.inbound
        message = str(error)
        if not isinstance(error, PipelineError):
            logger.exception("Unexpected error processing event %s", inbound.event_id)

        retry_count = attempt.record.retry_count
        decision = self.retry.decide(retry_count, attempt.now)
        state = attempt.order.state if attempt.order else None

        if decision.retry and decision.next_attempt_at is not None:
            self._write_status(
                self.event_store.schedule_retry,
                inbound.event_id,
                decision.retry_count,
                decision.next_attempt_at,
                code,
                message,
                attempt.now,
            )
            self._audit(
                _TRANSIENT_AUDIT_ACTIONS.get(code, AuditAction.RETRY_SCHEDULED),
                inbound,
                attempt.now,
                state,
                decision="retry",
                error_code=code.value,
                error=message,
                retry_count=decision.retry_count,
                delay_ms=round(decision.delay_ms),
                next_attempt_at=to_iso(decision.next_attempt_at),
            )
            return self._result(
                inbound,
                ProcessingOutcome.RETRY_SCHEDULED,
                order=attempt.order,
                retry_count=decision.retry_count,
                error_code=code,
                message=message,
            )

        self._write_status(
            self.event_store.mark_exhausted,
            inbound.event_id,
            retry_count,
            code,
            message,
            attempt.now,
        )
        exhausted = RetriesExhaustedError(
            details={"retry_count": retry_count, "last_error_code": code.value}
        )
        self._audit(
            AuditAction.EXHAUSTED,
            inbound,
            attempt.now,
            state,
            decision="exhaust",
            error_code=exhausted.code.value,
            last_error_code=code.value,
            error=message,
            retry_count=retry_count,
        )
        return self._result(
            inbound,
            ProcessingOutcome.EXHAUSTED,
            order=attempt.order,
            retry_count=retry_count,
            error_code=exhausted.code,
            message=str(exhausted),
        )

    # === Side channels ===

    def _write_status(self, writer: Any, *args: Any) -> None:
        """Run an event-row writer on a failure path.

        If storage is down as well the row stays ``processing`` and is
        reclaimed once it goes stale.
        """
        try:
            writer(*args)
        except PipelineError as e:
            logger.error("Failed to persist event status via %s: %s", writer.__name__, e)

    def _audit(
        self,
        action: AuditAction,
        inbound: InboundEvent,
        now: dt.datetime,
        resulting_state: OrderState | None = None,
        **detail: Any,
    ) -> None:
        record = AuditRecord(
            action=action,
            event_id=inbound.event_id,
            order_id=inbound.order_id,
            resulting_state=resulting_state,
            timestamp=now,
            detail=detail,
        )
        try:
            self.audit_log.append(record)
        except Exception as e:
            logger.error(
                "Failed to append %s audit record for event %s: %s",
                action.value,
                inbound.event_id,
                e,
            )

    def _notify(self, result: ProcessingResult) -> None:
        if self.notifier is None or result.outcome not in _NOTIFIED_OUTCOMES:
            return
        deliver(
            self.notifier,
            OutcomeNotification(
                order_id=result.order_id,
                event_id=result.event_id,
                event_type=result.event_type,
                outcome=result.outcome,
                order_state=result.order_state,
                error_code=result.error_code,
            ),
        )

    def _result(
        self,
        inbound: InboundEvent,
        outcome: ProcessingOutcome,
        order: Order | None = None,
        retry_count: int = 0,
        error_code: ErrorCode | None = None,
        message: str | None = None,
    ) -> ProcessingResult:
        result = ProcessingResult(
            event_id=inbound.event_id,
            event_type=inbound.event_type,
            outcome=outcome,
            order_id=inbound.order_id,
            order_state=order.state if order else None,
            order_version=order.version if order else None,
            retry_count=retry_count,
            error_code=error_code,
            message=message,
        )
        log_pipeline_event(
            logger,
            outcome.value,
            inbound.event_id,
            inbound.event_type,
            order_id=inbound.order_id,
            order_state=result.order_state.value if result.order_state else None,
            retry_count=retry_count,
            error_code=error_code.value if error_code else None,
            error=message if error_code else None,
        )
        self._notify(result)
        return result
