"""Pipeline services for the order event pipeline."""

from .audit_log import AuditLog
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .event_processor import EventProcessor
from .event_store import EventStore
from .notifications import (
    CompositeNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
    SNSNotificationSink,
)
from .order_lock import (
    DynamoDBLockProvider,
    InProcessLockProvider,
    LockHandle,
    LockProvider,
    order_lock,
    with_order_lock,
)
from .order_repository import OrderRepository
from .retry import RetryCoordinator, RetryDecision, RetryPolicy

__all__ = [
    "AuditLog",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "EventProcessor",
    "EventStore",
    "CompositeNotificationSink",
    "LoggingNotificationSink",
    "NotificationSink",
    "SNSNotificationSink",
    "DynamoDBLockProvider",
    "InProcessLockProvider",
    "LockHandle",
    "LockProvider",
    "order_lock",
    "with_order_lock",
    "OrderRepository",
    "RetryCoordinator",
    "RetryDecision",
    "RetryPolicy",
]
