"""Outbound outcome notifications.

Notification and KPI collaborators are told about applied, rejected and
exhausted events. Delivery is fire-and-forget: a failing sink never rolls
back or blocks the order transition that triggered it.
"""

from typing import Any, Protocol, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from orderflow.models import OutcomeNotification
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationSink(Protocol):
    """Receives outcome notifications from the pipeline."""

    def notify(self, notification: OutcomeNotification) -> None: ...


class LoggingNotificationSink:
    """Writes notifications to the log. Used when no topic is configured."""

    def notify(self, notification: OutcomeNotification) -> None:
        logger.info(
            "Notification: %s %s for order %s",
            notification.event_type,
            notification.outcome.value,
            notification.order_id,
            extra={"notification": notification.model_dump(mode="json")},
        )


class SNSNotificationSink:
    """Publishes notifications to an SNS topic.

    Usage:
        sink = SNSNotificationSink("arn:aws:sns:eu-west-1:123456789012:order-outcomes")
        sink.notify(notification)
    """

    def __init__(self, topic_arn: str, client: Any | None = None) -> None:
        """Initialize the SNS client.

        Args:
            topic_arn: Topic to publish to
            client: Optional boto3 SNS client
        """
        self.topic_arn = topic_arn
        self._client = client or boto3.client("sns")

    def notify(self, notification: OutcomeNotification) -> None:
        """Publish one notification.

        Raises:
            ClientError: If SNS rejects the publish.
            BotoCoreError: On connection failures.
        """
        self._client.publish(
            TopicArn=self.topic_arn,
            Message=notification.model_dump_json(),
            MessageAttributes={
                "outcome": {
                    "DataType": "String",
                    "StringValue": notification.outcome.value,
                },
                "event_type": {
                    "DataType": "String",
                    "StringValue": notification.event_type,
                },
            },
        )
        logger.debug(
            "Published %s notification for event %s",
            notification.outcome.value,
            notification.event_id,
        )


class CompositeNotificationSink:
    """Fans a notification out to several sinks.

    Each sink is isolated: a failure in one is logged and the remaining
    sinks still run.
    """

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self.sinks = list(sinks)

    def notify(self, notification: OutcomeNotification) -> None:
        for sink in self.sinks:
            deliver(sink, notification)


def deliver(sink: NotificationSink, notification: OutcomeNotification) -> bool:
    """Deliver a notification, logging and absorbing any sink failure.

    Returns:
        True if the sink accepted the notification.
    """
    try:
        sink.notify(notification)
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(
            "Notification delivery to %s failed: %s",
            type(sink).__name__,
            e,
            extra={"event_id": notification.event_id},
        )
    except Exception as e:
        logger.exception(
            "Unexpected error in notification sink %s: %s",
            type(sink).__name__,
            e,
            extra={"event_id": notification.event_id},
        )
    return False
