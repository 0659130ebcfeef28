"""
Notification Processor Lambda Handler
=====================================
Triggered by the Notifications Queue (SQS FIFO event source, batch size 10).

For each record:
  1. parse and validate the envelope          (MessageValidationError)
  2. record an in-app inbox entry             (best-effort, never blocks)
  3. forward the same envelope to the Emails Queue, keeping `id` as the
     dedup key and `userEmail` as the group key   (QueuePublishError)

Any failure raises out of the handler, so the whole batch becomes visible
again after the visibility timeout. Records that were already forwarded are
republished with the same MessageDeduplicationId and collapsed by the
Emails Queue.
"""
from __future__ import annotations

from aws_xray_sdk.core import patch_all

from shared.config import NotificationProcessorSettings
from shared.errors import PipelineError
from shared.inbox import InboxRecorder
from shared.messages import NotificationMessage
from shared.queues import MessageQueue, PublishResult, QueueRecord, SqsFifoQueue

patch_all()

from shared.logger import get_logger, log_context
logger = get_logger(__name__)


class NotificationProcessor:
    def __init__(self, emails_queue: MessageQueue, inbox: InboxRecorder | None = None):
        self.emails_queue = emails_queue
        self.inbox = inbox

    @classmethod
    def from_settings(cls, settings: NotificationProcessorSettings | None = None) -> "NotificationProcessor":
        settings = settings or NotificationProcessorSettings.from_env()
        inbox = (
            InboxRecorder(settings.notification_store_endpoint)
            if settings.notification_store_endpoint
            else None
        )
        return cls(SqsFifoQueue(settings.emails_queue_url), inbox)

    def process_batch(self, records: list[QueueRecord]) -> None:
        """Forward every record or raise. Nothing is partially acknowledged."""
        for record in records:
            with log_context(sqs_message_id=record.message_id):
                self.process_record(record)

    def process_record(self, record: QueueRecord) -> PublishResult:
        message = NotificationMessage.from_json(record.body, record.message_id)

        with log_context(
            message_id=message.id,
            notification_type=message.type,
            user_email=message.user_email,
        ):
            if self.inbox is not None:
                self.inbox.record(message)

            result = self.emails_queue.publish(message)
            logger.info(
                "Notification forwarded to emails queue",
                extra={"emails_queue": self.emails_queue.name, "duplicate": result.duplicate},
            )
            return result


# ---------------------------------------------------------------------------
# Entry point, triggered by the SQS event source mapping
# ---------------------------------------------------------------------------

_processor: NotificationProcessor | None = None


def _get_processor() -> NotificationProcessor:
    global _processor
    if _processor is None:
        _processor = NotificationProcessor.from_settings()
    return _processor


def handler(event: dict, context) -> dict:
    records = [QueueRecord.from_lambda_record(r) for r in event.get("Records", [])]
    logger.info("Notification batch received", extra={"batch_size": len(records)})

    try:
        _get_processor().process_batch(records)
    except PipelineError:
        logger.exception("Notification batch failed, whole batch will be redelivered")
        raise

    return {"forwarded": len(records)}
