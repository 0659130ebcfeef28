"""
In-Process FIFO Queue
=====================
Emulates the SQS FIFO contract the pipeline depends on, for running the whole
pipeline on a laptop (scripts/run_local_pipeline.py) and for deterministic
tests of the queue properties. Not durable across processes: production
always uses SqsFifoQueue.

Semantics reproduced:
  - dedup:       a second publish with the same id inside `dedup_window`
                 returns the first message's id and stores nothing
  - ordering:    only the head of a group is ever deliverable, and only
                 while it is not in flight
  - visibility:  a received message is hidden for `visibility_timeout`
                 seconds, then redelivered with a new receipt handle
  - redrive:     a head that has already been received `max_receive_count`
                 times is moved to the dead-letter queue on the next receive
  - retention:   messages older than `retention_period` are discarded

Time comes from an injectable clock so tests can step past timeouts.
"""
from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from shared.config import (
    BATCH_SIZE,
    DEDUP_WINDOW_SECONDS,
    MAX_RECEIVE_COUNT,
    RETENTION_PERIOD_SECONDS,
    VISIBILITY_TIMEOUT_SECONDS,
)
from shared.logger import get_logger
from shared.messages import NotificationMessage
from shared.queues import PublishResult, QueueDepth, QueueRecord

logger = get_logger(__name__)


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    group_id: str
    sent_at: float
    attributes: dict[str, str] = field(default_factory=dict)
    receive_count: int = 0
    invisible_until: float = 0.0
    receipt_handle: str | None = None


class LocalFifoQueue:
    def __init__(
        self,
        name: str,
        *,
        visibility_timeout: float = VISIBILITY_TIMEOUT_SECONDS,
        retention_period: float = RETENTION_PERIOD_SECONDS,
        dedup_window: float = DEDUP_WINDOW_SECONDS,
        max_receive_count: int = MAX_RECEIVE_COUNT,
        dead_letter_queue: "LocalFifoQueue | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.retention_period = retention_period
        self.dedup_window = dedup_window
        self.max_receive_count = max_receive_count
        self.dead_letter_queue = dead_letter_queue
        self._clock = clock
        self._messages: list[_StoredMessage] = []
        self._dedup: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    @classmethod
    def with_dead_letter_queue(cls, name: str, **kwargs) -> "LocalFifoQueue":
        """Create a queue plus its paired DLQ (`x.fifo` → `x-dlq.fifo`)."""
        base = name[: -len(".fifo")] if name.endswith(".fifo") else name
        dlq = cls(
            f"{base}-dlq.fifo",
            retention_period=kwargs.get("retention_period", RETENTION_PERIOD_SECONDS),
            clock=kwargs.get("clock", time.monotonic),
        )
        return cls(name, dead_letter_queue=dlq, **kwargs)

    # ------------------------------------------------------------------
    # Queue contract
    # ------------------------------------------------------------------

    def publish(self, message: NotificationMessage) -> PublishResult:
        with self._lock:
            now = self._clock()
            self._expire_dedup(now)

            existing = self._dedup.get(message.id)
            if existing is not None:
                logger.info(
                    "Duplicate publish collapsed",
                    extra={"queue": self.name, "message_id": message.id},
                )
                return PublishResult(message_id=existing[1], duplicate=True)

            stored = _StoredMessage(
                message_id=str(uuid.uuid4()),
                body=message.to_json(),
                group_id=message.user_email,
                sent_at=now,
                attributes={"Type": message.type, "UserEmail": message.user_email},
            )
            self._messages.append(stored)
            self._dedup[message.id] = (now + self.dedup_window, stored.message_id)
            return PublishResult(message_id=stored.message_id)

    def receive(
        self, max_messages: int = BATCH_SIZE, visibility_timeout: float | None = None
    ) -> list[QueueRecord]:
        timeout = self.visibility_timeout if visibility_timeout is None else visibility_timeout
        with self._lock:
            now = self._clock()
            self._drop_expired(now)

            batch: list[QueueRecord] = []
            considered_groups: set[str] = set()
            for stored in list(self._messages):
                if len(batch) >= max_messages:
                    break
                # Only the oldest message of each group is a candidate
                if stored.group_id in considered_groups:
                    continue
                considered_groups.add(stored.group_id)

                if stored.invisible_until > now:
                    continue  # head in flight, whole group blocked

                if self.dead_letter_queue is not None and stored.receive_count >= self.max_receive_count:
                    self._move_to_dead_letter_queue(stored)
                    # The next message of this group becomes the head
                    considered_groups.discard(stored.group_id)
                    continue

                stored.receive_count += 1
                stored.receipt_handle = uuid.uuid4().hex
                stored.invisible_until = now + timeout
                batch.append(self._to_record(stored))
            return batch

    def acknowledge(self, record: QueueRecord) -> None:
        with self._lock:
            for stored in self._messages:
                if stored.receipt_handle == record.receipt_handle:
                    self._messages.remove(stored)
                    return
        # Redelivered since (visibility expired) or already deleted
        logger.warning(
            "Acknowledge ignored: stale receipt handle",
            extra={"queue": self.name, "sqs_message_id": record.message_id},
        )

    def depth(self) -> QueueDepth:
        with self._lock:
            now = self._clock()
            in_flight = sum(1 for m in self._messages if m.invisible_until > now)
            return QueueDepth(visible=len(self._messages) - in_flight, in_flight=in_flight)

    def peek(self) -> list[QueueRecord]:
        """All stored messages in order, without receiving them."""
        with self._lock:
            return [self._to_record(m) for m in self._messages]

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _move_to_dead_letter_queue(self, stored: _StoredMessage) -> None:
        self._messages.remove(stored)
        dlq = self.dead_letter_queue
        with dlq._lock:
            dlq._messages.append(_StoredMessage(
                message_id=stored.message_id,
                body=stored.body,
                group_id=stored.group_id,
                sent_at=stored.sent_at,
                attributes=dict(stored.attributes),
            ))
        logger.error(
            "Message moved to dead-letter queue",
            extra={
                "queue": self.name,
                "dead_letter_queue": dlq.name,
                "sqs_message_id": stored.message_id,
                "receive_count": stored.receive_count,
            },
        )

    def _drop_expired(self, now: float) -> None:
        expired = [m for m in self._messages if now - m.sent_at >= self.retention_period]
        for stored in expired:
            self._messages.remove(stored)
            logger.warning(
                "Message discarded after retention period",
                extra={"queue": self.name, "sqs_message_id": stored.message_id},
            )

    def _expire_dedup(self, now: float) -> None:
        for key in [k for k, (expires_at, _) in self._dedup.items() if expires_at <= now]:
            del self._dedup[key]

    @staticmethod
    def _to_record(stored: _StoredMessage) -> QueueRecord:
        return QueueRecord(
            message_id=stored.message_id,
            receipt_handle=stored.receipt_handle or "",
            body=stored.body,
            group_id=stored.group_id,
            receive_count=stored.receive_count,
            attributes=dict(stored.attributes),
        )
