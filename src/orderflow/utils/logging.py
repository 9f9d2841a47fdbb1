"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for tracing one event through the pipeline
- Structured logging formatter for consistent log output
- Helper for logging pipeline outcomes

Usage:
    from orderflow.utils.logging import get_logger, set_correlation_id

    # At the start of processing an event:
    set_correlation_id(event.event_id)

    # In service code:
    logger = get_logger(__name__)
    logger.info("Applying transition", extra={"order_id": "ORD-123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def generate_correlation_id() -> str:
    """Generate a new correlation ID.

    Returns:
        UUID-based correlation ID string
    """
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter for structured log output with correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)

        # Correlation ID prefix for easy grep/filtering
        return f"[{record.correlation_id}] {base}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def configure_logging(level: str = "INFO") -> None:
    """Install a StructuredFormatter handler on the package logger.

    Called once by entry points (the CLI). Library code only calls
    get_logger and leaves handler setup to the host application.

    Args:
        level: Log level name
    """
    package_logger = logging.getLogger("orderflow")
    package_logger.setLevel(level.upper())

    if not any(
        isinstance(h.formatter, StructuredFormatter) for h in package_logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredFormatter(LOG_FORMAT))
        package_logger.addHandler(handler)


def log_pipeline_event(
    logger: logging.Logger,
    outcome: str,
    event_id: str,
    event_type: str,
    *,
    order_id: str | None = None,
    order_state: str | None = None,
    retry_count: int | None = None,
    error_code: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log the outcome of one pipeline attempt with structured context.

    Args:
        logger: Logger instance
        outcome: Processing outcome (applied, duplicate, skipped, rejected,
            retry_scheduled, exhausted)
        event_id: Event ID
        event_type: Event type
        order_id: Associated order ID if available
        order_state: Order state after the attempt, when known
        retry_count: Retry counter after the attempt
        error_code: Error code if the attempt failed
        error: Error message if the attempt failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {
        "event_type": event_type,
        "event_id": event_id,
        "outcome": outcome,
    }

    if order_id:
        context["order_id"] = order_id
    if order_state:
        context["order_state"] = order_state
    if retry_count is not None:
        context["retry_count"] = retry_count
    if error_code:
        context["error_code"] = error_code
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Pipeline event: {event_type} ({event_id})", f"outcome={outcome}"]
    if order_id:
        msg_parts.append(f"order={order_id}")
    if order_state:
        msg_parts.append(f"state={order_state}")
    if retry_count:
        msg_parts.append(f"retries={retry_count}")
    if error_code:
        msg_parts.append(f"code={error_code}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if outcome == "exhausted":
        logger.error(message, extra=context)
    elif outcome in ("duplicate", "skipped", "rejected", "retry_scheduled"):
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
