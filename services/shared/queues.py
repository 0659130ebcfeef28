"""
Ordered, Deduplicated Queues
============================
Both pipeline queues are SQS FIFO queues. Three SQS features carry the whole
delivery contract, so the consumers contain no retry code at all:

  MessageGroupId = userEmail       → strict order per recipient, one group in flight
  MessageDeduplicationId = id      → a re-publish within 5 minutes is collapsed
  RedrivePolicy maxReceiveCount=3  → poison messages end up in the paired DLQ

MessageQueue is the contract the processors and the poller program against.
SqsFifoQueue is the production implementation; LocalFifoQueue (local_queue.py)
emulates the same contract in-process for local runs and tests.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.config import BATCH_SIZE
from shared.errors import QueuePublishError
from shared.logger import get_logger
from shared.messages import NotificationMessage

logger = get_logger(__name__)

# SQS hard limit for ReceiveMessage
_SQS_MAX_BATCH = 10


@dataclass(frozen=True)
class QueueRecord:
    """One received message, independent of how it was received."""
    message_id: str
    receipt_handle: str
    body: str
    group_id: str | None = None
    receive_count: int = 1
    attributes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_lambda_record(cls, record: dict) -> "QueueRecord":
        """Build from an SQS event source record (camelCase keys)."""
        system = record.get("attributes") or {}
        attrs = record.get("messageAttributes") or {}
        return cls(
            message_id=record["messageId"],
            receipt_handle=record.get("receiptHandle", ""),
            body=record.get("body", ""),
            group_id=system.get("MessageGroupId"),
            receive_count=int(system.get("ApproximateReceiveCount", 1)),
            attributes={k: v.get("stringValue") for k, v in attrs.items()},
        )

    @classmethod
    def from_sqs_message(cls, message: dict) -> "QueueRecord":
        """Build from a boto3 receive_message entry (PascalCase keys)."""
        system = message.get("Attributes") or {}
        attrs = message.get("MessageAttributes") or {}
        return cls(
            message_id=message["MessageId"],
            receipt_handle=message["ReceiptHandle"],
            body=message.get("Body", ""),
            group_id=system.get("MessageGroupId"),
            receive_count=int(system.get("ApproximateReceiveCount", 1)),
            attributes={k: v.get("StringValue") for k, v in attrs.items()},
        )


@dataclass(frozen=True)
class PublishResult:
    message_id: str
    sequence_number: str | None = None
    duplicate: bool = False


@dataclass(frozen=True)
class QueueDepth:
    visible: int
    in_flight: int


class MessageQueue(Protocol):
    name: str

    def publish(self, message: NotificationMessage) -> PublishResult: ...

    def receive(
        self, max_messages: int = BATCH_SIZE, visibility_timeout: int | None = None
    ) -> list[QueueRecord]: ...

    def acknowledge(self, record: QueueRecord) -> None: ...

    def depth(self) -> QueueDepth: ...


class SqsFifoQueue:
    """
    boto3 wrapper around one FIFO queue.

    Parameters
    ----------
    queue_url:          Full queue URL (…/edumatch-emails.fifo)
    client:             Injected boto3 SQS client; created lazily if omitted
    wait_time_seconds:  Long-poll duration for receive(); 0 returns immediately
    """

    def __init__(self, queue_url: str, client=None, wait_time_seconds: int = 0):
        self.queue_url = queue_url
        self.name = queue_url.rstrip("/").rsplit("/", 1)[-1]
        self.wait_time_seconds = wait_time_seconds
        self._client = client or boto3.client("sqs")

    def publish(self, message: NotificationMessage) -> PublishResult:
        try:
            resp = self._client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=message.to_json(),
                MessageAttributes=message.queue_attributes(),
                MessageGroupId=message.user_email,
                MessageDeduplicationId=message.id,
            )
        except (ClientError, BotoCoreError) as e:
            raise QueuePublishError(self.name, message.id, str(e)) from e

        logger.info(
            "Message published",
            extra={
                "queue": self.name,
                "message_id": message.id,
                "notification_type": message.type,
                "sqs_message_id": resp["MessageId"],
            },
        )
        return PublishResult(
            message_id=resp["MessageId"],
            sequence_number=resp.get("SequenceNumber"),
        )

    def receive(
        self, max_messages: int = BATCH_SIZE, visibility_timeout: int | None = None
    ) -> list[QueueRecord]:
        kwargs = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": max(1, min(max_messages, _SQS_MAX_BATCH)),
            "WaitTimeSeconds": self.wait_time_seconds,
            "AttributeNames": ["All"],
            "MessageAttributeNames": ["All"],
        }
        if visibility_timeout is not None:
            kwargs["VisibilityTimeout"] = visibility_timeout
        resp = self._client.receive_message(**kwargs)
        return [QueueRecord.from_sqs_message(m) for m in resp.get("Messages", [])]

    def acknowledge(self, record: QueueRecord) -> None:
        self._client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=record.receipt_handle)

    def depth(self) -> QueueDepth:
        attrs = self._client.get_queue_attributes(
            QueueUrl=self.queue_url,
            AttributeNames=[
                "ApproximateNumberOfMessages",
                "ApproximateNumberOfMessagesNotVisible",
            ],
        )["Attributes"]
        return QueueDepth(
            visible=int(attrs.get("ApproximateNumberOfMessages", 0)),
            in_flight=int(attrs.get("ApproximateNumberOfMessagesNotVisible", 0)),
        )
