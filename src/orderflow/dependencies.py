"""Dependency providers for the pipeline services.

This module provides factory functions for service instances using @lru_cache
so that every entry point in a process shares one instance of each service.
Services are lazily instantiated from get_settings().

Usage:
    from orderflow.dependencies import get_event_processor

    result = get_event_processor().process(inbound)

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── EventStore
        ├── OrderRepository
        ├── AuditLog
        └── DynamoDBLockProvider (or InProcessLockProvider)
    RetryCoordinator
    NotificationSink (logging, plus SNS when a topic is configured)
        └── EventProcessor (all of the above)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from orderflow.config import get_settings
from orderflow.services.audit_log import AuditLog
from orderflow.services.dynamodb import DynamoDBService, get_dynamodb_service
from orderflow.services.event_processor import EventProcessor
from orderflow.services.event_store import EventStore
from orderflow.services.notifications import (
    CompositeNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
    SNSNotificationSink,
)
from orderflow.services.order_lock import (
    DynamoDBLockProvider,
    InProcessLockProvider,
    LockProvider,
)
from orderflow.services.order_repository import OrderRepository
from orderflow.services.retry import RetryCoordinator


def _db() -> DynamoDBService:
    settings = get_settings()
    return get_dynamodb_service(settings.environment, settings.table_prefix)


@lru_cache
def get_event_store() -> EventStore:
    """Get cached EventStore instance."""
    settings = get_settings()
    return EventStore(
        db=_db(),
        stale_processing_seconds=settings.stale_processing_seconds,
    )


@lru_cache
def get_order_repository() -> OrderRepository:
    """Get cached OrderRepository instance."""
    return OrderRepository(db=_db())


@lru_cache
def get_audit_log() -> AuditLog:
    """Get cached AuditLog instance."""
    return AuditLog(db=_db())


@lru_cache
def get_lock_provider() -> LockProvider:
    """Get cached LockProvider for the configured backend.

    Returns:
        InProcessLockProvider for ``local``, otherwise DynamoDBLockProvider.
    """
    settings = get_settings()
    if settings.lock_backend == "local":
        return InProcessLockProvider()
    return DynamoDBLockProvider(
        db=_db(),
        lease_seconds=settings.lock_lease_seconds,
        poll_interval_ms=settings.lock_poll_interval_ms,
    )


@lru_cache
def get_notification_sink() -> NotificationSink:
    """Get cached NotificationSink.

    Returns:
        Logging sink, fanned out to SNS as well when
        ORDERFLOW_NOTIFICATION_TOPIC_ARN is set.
    """
    topic_arn = get_settings().notification_topic_arn
    if not topic_arn:
        return LoggingNotificationSink()
    return CompositeNotificationSink(
        [LoggingNotificationSink(), SNSNotificationSink(topic_arn)]
    )


@lru_cache
def get_event_processor() -> EventProcessor:
    """Get cached EventProcessor instance.

    Returns:
        EventProcessor configured with all required dependencies.
    """
    settings = get_settings()
    return EventProcessor(
        event_store=get_event_store(),
        orders=get_order_repository(),
        audit_log=get_audit_log(),
        locks=get_lock_provider(),
        retry=RetryCoordinator(settings.retry_policy()),
        notifier=get_notification_sink(),
        lock_timeout_seconds=settings.lock_timeout_seconds,
        max_conflict_retries=settings.max_conflict_retries,
    )


def reset_services() -> None:
    """Clear all cached service instances and settings.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB singleton.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    from orderflow.services.dynamodb import reset_dynamodb_service

    get_event_store.cache_clear()
    get_order_repository.cache_clear()
    get_audit_log.cache_clear()
    get_lock_provider.cache_clear()
    get_notification_sink.cache_clear()
    get_event_processor.cache_clear()
    get_settings.cache_clear()

    reset_dynamodb_service()
