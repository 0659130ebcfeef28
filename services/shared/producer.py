"""
Notification Producer
=====================
Used by the application (or scripts) to drop a notification on the
Notifications Queue. Publishing is fire-and-forget relative to the business
transaction that triggered it: a payment is still a payment even if the
"payment received" email never gets queued. So publish() logs a failure and
returns False instead of raising into the caller.

Message ids are `<kind>-<userId>-<epoch millis>`: unique per event, and
stable across SDK retries of the same send so FIFO dedup drops the repeats.
"""
from __future__ import annotations

import time
from typing import Any, Callable

from shared.config import ProducerSettings
from shared.errors import QueuePublishError
from shared.logger import get_logger
from shared.messages import NotificationMessage, NotificationType
from shared.queues import MessageQueue, SqsFifoQueue

logger = get_logger(__name__)


def notification_id(
    kind: NotificationType | str,
    user_id: str,
    *,
    discriminator: str | None = None,
    clock: Callable[[], float] = time.time,
) -> str:
    prefix = NotificationType(kind).value.lower().replace("_", "-")
    parts = [prefix, user_id]
    if discriminator:
        parts.append(discriminator)
    parts.append(str(int(clock() * 1000)))
    return "-".join(parts)


def new_notification(
    kind: NotificationType | str,
    user_id: str,
    user_email: str,
    metadata: dict[str, Any] | None = None,
    *,
    discriminator: str | None = None,
    clock: Callable[[], float] = time.time,
) -> NotificationMessage:
    """Build a validated envelope with a generated id. Raises ValidationError on bad input."""
    kind = NotificationType(kind)
    return NotificationMessage(
        id=notification_id(kind, user_id, discriminator=discriminator, clock=clock),
        type=kind.value,
        user_id=user_id,
        user_email=user_email,
        metadata=metadata or {},
    )


class NotificationPublisher:
    def __init__(self, queue: MessageQueue):
        self.queue = queue

    @classmethod
    def from_settings(cls, settings: ProducerSettings | None = None) -> "NotificationPublisher":
        settings = settings or ProducerSettings.from_env()
        return cls(SqsFifoQueue(settings.notifications_queue_url))

    def publish(self, message: NotificationMessage) -> bool:
        try:
            result = self.queue.publish(message)
        except QueuePublishError as e:
            logger.error(
                "Notification not queued",
                extra={
                    "message_id": message.id,
                    "notification_type": message.type,
                    "error": str(e),
                },
            )
            return False

        logger.info(
            "Notification queued",
            extra={
                "message_id": message.id,
                "notification_type": message.type,
                "duplicate": result.duplicate,
            },
        )
        return True

    def notify(
        self,
        kind: NotificationType | str,
        user_id: str,
        user_email: str,
        **metadata: Any,
    ) -> NotificationMessage | None:
        """Build and publish in one call. Returns the message if it was queued."""
        message = new_notification(kind, user_id, user_email, metadata)
        return message if self.publish(message) else None
