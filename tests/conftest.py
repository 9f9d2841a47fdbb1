"""Pytest configuration and fixtures for the order event pipeline tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto
- Pipeline services wired against the mocked tables
- A controllable clock and order factories
"""

import datetime as dt
import os
from typing import Any, Callable, Generator

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-orderflow")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from orderflow.models import InboundEvent, Order, OrderState  # noqa: E402
from orderflow.services.audit_log import AuditLog  # noqa: E402
from orderflow.services.dynamodb import DynamoDBService  # noqa: E402
from orderflow.services.event_processor import EventProcessor  # noqa: E402
from orderflow.services.event_store import EventStore  # noqa: E402
from orderflow.services.order_lock import InProcessLockProvider  # noqa: E402
from orderflow.services.order_repository import OrderRepository  # noqa: E402
from orderflow.services.retry import RetryCoordinator, RetryPolicy  # noqa: E402
from orderflow.services.tables import ORDERS_TABLE  # noqa: E402
from orderflow.utils.clock import to_iso  # noqa: E402

TABLE_PREFIX = "test-orderflow"
START_TIME = dt.datetime(2026, 3, 1, 12, 0, 0, tzinfo=dt.UTC)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: dt.datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


class RecordingSink:
    """Notification sink that keeps what it was given."""

    def __init__(self) -> None:
        self.notifications: list[Any] = []

    def notify(self, notification: Any) -> None:
        self.notifications.append(notification)


# === Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    This ensures tests using mock_aws get a fresh DynamoDBService
    inside the mock context rather than reusing one from a previous
    test or non-mocked context.
    """
    from orderflow.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked DynamoDB client."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        yield client


@pytest.fixture
def create_tables(dynamodb_client: Any) -> list[str]:
    """Create all pipeline tables in the mocked account."""
    from orderflow.services.tables import create_tables as _create_tables

    return _create_tables(dynamodb_client, TABLE_PREFIX)


@pytest.fixture
def db(create_tables: list[str]) -> DynamoDBService:
    """DynamoDBService bound to the mocked tables."""
    return DynamoDBService(environment="test", table_prefix=TABLE_PREFIX)


# === Service Fixtures ===


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_store(db: DynamoDBService) -> EventStore:
    return EventStore(db, stale_processing_seconds=300)


@pytest.fixture
def order_repository(db: DynamoDBService) -> OrderRepository:
    return OrderRepository(db)


@pytest.fixture
def audit_log(db: DynamoDBService) -> AuditLog:
    return AuditLog(db)


@pytest.fixture
def lock_provider() -> InProcessLockProvider:
    return InProcessLockProvider()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Retry policy without jitter so delays are exact."""
    return RetryPolicy(
        max_retries=3,
        base_delay_ms=1000,
        backoff_multiplier=2.0,
        max_delay_ms=60_000,
        jitter_ms=0,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def processor(
    event_store: EventStore,
    order_repository: OrderRepository,
    audit_log: AuditLog,
    lock_provider: InProcessLockProvider,
    retry_policy: RetryPolicy,
    sink: RecordingSink,
    clock: FakeClock,
) -> EventProcessor:
    """EventProcessor wired against the mocked tables."""
    return EventProcessor(
        event_store=event_store,
        orders=order_repository,
        audit_log=audit_log,
        locks=lock_provider,
        retry=RetryCoordinator(retry_policy),
        notifier=sink,
        lock_timeout_seconds=0.5,
        max_conflict_retries=3,
        clock=clock,
    )


# === Sample Data Fixtures ===


@pytest.fixture
def order_at(
    db: DynamoDBService, order_repository: OrderRepository
) -> Callable[..., Order]:
    """Factory that stores an order directly in a given state and version."""

    def _order_at(
        state: OrderState = OrderState.PENDING_PAYMENT,
        order_id: str = "ORD-1001",
        version: int = 0,
    ) -> Order:
        db.put_item(
            ORDERS_TABLE,
            {
                "order_id": order_id,
                "state": state.value,
                "version": version,
                "created_at": to_iso(START_TIME),
                "updated_at": to_iso(START_TIME),
            },
        )
        return order_repository.load(order_id)

    return _order_at


@pytest.fixture
def make_event() -> Callable[..., InboundEvent]:
    """Factory for inbound event descriptors."""

    def _make_event(
        event_type: str = "payment_succeeded",
        event_id: str = "evt_1",
        order_id: str | None = "ORD-1001",
        **payload: Any,
    ) -> InboundEvent:
        return InboundEvent(
            event_id=event_id,
            event_type=event_type,
            order_id=order_id,
            payload=payload,
            received_at=START_TIME,
        )

    return _make_event
