"""
Poll-Mode Worker
================
In AWS the processors are driven by Lambda SQS event sources. drain() is the
same loop for everywhere else (local runs, operator scripts, tests):

    receive batch -> process_batch(records) -> acknowledge the successes

`process_batch` follows one of the two processor contracts:
  - returns the message ids that failed (Email Processor style); only those
    stay on the queue, or
  - raises (Notification Processor style); nothing from the batch is
    acknowledged and the whole batch is redelivered after the visibility
    timeout.

Failed records are never retried here. Redelivery and DLQ placement belong
to the queue.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from shared.config import BATCH_SIZE
from shared.errors import PipelineError
from shared.logger import get_logger
from shared.queues import MessageQueue, QueueRecord

logger = get_logger(__name__)

BatchProcessor = Callable[[list[QueueRecord]], "Iterable[str] | None"]


@dataclass
class DrainReport:
    received: int = 0
    acknowledged: int = 0
    failed: int = 0
    batches: int = 0


def drain(
    queue: MessageQueue,
    process_batch: BatchProcessor,
    batch_size: int = BATCH_SIZE,
    max_batches: int | None = None,
) -> DrainReport:
    """Process batches until a receive comes back empty (or max_batches is hit)."""
    report = DrainReport()

    while max_batches is None or report.batches < max_batches:
        records = queue.receive(batch_size)
        if not records:
            break
        report.batches += 1
        report.received += len(records)

        try:
            failed_ids = set(process_batch(records) or ())
        except PipelineError as e:
            logger.error(
                "Batch failed, leaving it for redelivery",
                extra={"queue": queue.name, "batch_size": len(records), "error": str(e)},
            )
            report.failed += len(records)
            continue

        for record in records:
            if record.message_id in failed_ids:
                report.failed += 1
                continue
            queue.acknowledge(record)
            report.acknowledged += 1

    logger.info(
        "Queue drained",
        extra={
            "queue": queue.name,
            "batches": report.batches,
            "received": report.received,
            "acknowledged": report.acknowledged,
            "failed": report.failed,
        },
    )
    return report
