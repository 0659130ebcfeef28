"""
Email Processor Lambda Handler
==============================
Triggered by the Emails Queue (SQS FIFO event source, batch size 10, partial
batch responses enabled). Per job:

    RECEIVED -> TEMPLATE_LOOKUP -> (no template) ACK_SKIPPED
                                -> RENDER -> DELIVER_PRIMARY -> ACK_SENT
                                                -> DELIVER_FALLBACK -> ACK_SENT
                                                                  -> FAILED

Outcomes map onto the queue like this:
  - SENT and SKIPPED records are acknowledged (not listed as failures)
  - FAILED records are returned in batchItemFailures and redelivered after
    the visibility timeout, then moved to the DLQ after 3 receives

An unknown type is skipped rather than failed.

FIFO ordering within a batch: once a record fails, every later record of the
same group (recipient) in this batch is reported as failed without being
processed, so a recipient never receives email N+1 before email N.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import requests
from aws_xray_sdk.core import patch_all

from shared.config import EmailProcessorSettings
from shared.delivery import DeliveryReceipt, EmailDeliveryClient, OutboundEmail
from shared.errors import PipelineError
from shared.messages import EmailJob
from shared.queues import QueueRecord
from shared.templates import TemplateRegistry

patch_all()

from shared.logger import get_logger, log_context
logger = get_logger(__name__)


class JobOutcome(str, Enum):
    SENT = "SENT"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class EmailJobResult:
    message_id: str
    outcome: JobOutcome
    receipt: DeliveryReceipt | None = None


class EmailProcessor:
    def __init__(self, templates: TemplateRegistry, delivery: EmailDeliveryClient, sender: str):
        self.templates = templates
        self.delivery = delivery
        self.sender = sender

    @classmethod
    def from_settings(
        cls,
        settings: EmailProcessorSettings | None = None,
        session: requests.Session | None = None,
    ) -> "EmailProcessor":
        settings = settings or EmailProcessorSettings.from_env()
        return cls(
            templates=TemplateRegistry.default(settings.app_base_url),
            delivery=EmailDeliveryClient.from_settings(settings, session=session),
            sender=settings.email_from,
        )

    def process_record(self, record: QueueRecord) -> EmailJobResult:
        """Render and deliver one job. Raises a PipelineError when it should be retried."""
        job = EmailJob.from_json(record.body, record.message_id)

        with log_context(message_id=job.id, notification_type=job.type, user_email=job.user_email):
            render = self.templates.resolve(job.type)
            if render is None:
                logger.warning("No email template for notification type, skipping")
                return EmailJobResult(job.id, JobOutcome.SKIPPED)

            email = render(job)
            receipt = self.delivery.send(
                OutboundEmail(to=job.user_email, subject=email.subject, html=email.html, from_=self.sender)
            )
            logger.info(
                "Email sent",
                extra={
                    "endpoint": receipt.endpoint,
                    "used_fallback": receipt.used_fallback,
                    "provider_message_id": receipt.message_id,
                },
            )
            return EmailJobResult(job.id, JobOutcome.SENT, receipt)

    def process_batch(self, records: list[QueueRecord]) -> list[str]:
        """Process every record; return the queue message ids that must be redelivered."""
        failed: list[str] = []
        blocked_groups: set[str] = set()

        for record in records:
            with log_context(sqs_message_id=record.message_id):
                if record.group_id is not None and record.group_id in blocked_groups:
                    logger.warning("Earlier message of this recipient failed, deferring")
                    failed.append(record.message_id)
                    continue

                try:
                    self.process_record(record)
                    continue
                except PipelineError as e:
                    logger.error("Email job failed, leaving it for redelivery", extra={"error": str(e)})
                except Exception:
                    logger.exception("Unexpected error in email job")

                failed.append(record.message_id)
                if record.group_id is not None:
                    blocked_groups.add(record.group_id)

        return failed


# ---------------------------------------------------------------------------
# Entry point, triggered by the SQS event source mapping
# ---------------------------------------------------------------------------

_processor: EmailProcessor | None = None


def _get_processor() -> EmailProcessor:
    global _processor
    if _processor is None:
        _processor = EmailProcessor.from_settings()
    return _processor


def handler(event: dict, context) -> dict:
    """
    SQS batch handler. Returns {"batchItemFailures": [...]} so only the
    failed jobs are retried, not the entire batch.
    See: https://docs.aws.amazon.com/lambda/latest/dg/with-sqs.html
    """
    records = [QueueRecord.from_lambda_record(r) for r in event.get("Records", [])]
    logger.info("Email batch received", extra={"batch_size": len(records)})

    failed = _get_processor().process_batch(records)
    return {"batchItemFailures": [{"itemIdentifier": message_id} for message_id in failed]}
