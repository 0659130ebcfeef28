"""
Messaging Stack
===============
The two FIFO queues of the notification pipeline, each with a paired FIFO
Dead Letter Queue:

    edumatch-notifications.fifo  ->  edumatch-notifications-dlq.fifo
    edumatch-emails.fifo         ->  edumatch-emails-dlq.fifo

All retry behaviour is declared here rather than coded in the processors:
  - visibility timeout 300s   = processor timeout, so an invocation that is
                                still running never sees its message redelivered
  - maxReceiveCount 3         = 3 deliveries, then the DLQ
  - retention 14 days         = the SQS maximum, on queues and DLQs alike

Content-based deduplication is enabled as a safety net. Producers always set
an explicit MessageDeduplicationId (the notification id), which takes
precedence over the body hash.
"""
import aws_cdk as cdk
from aws_cdk import aws_sqs as sqs
from constructs import Construct

QUEUE_PREFIX = "edumatch"
VISIBILITY_TIMEOUT = cdk.Duration.seconds(300)
RETENTION_PERIOD = cdk.Duration.days(14)
MAX_RECEIVE_COUNT = 3


class MessagingStack(cdk.Stack):
    def __init__(self, scope: Construct, id: str, **kwargs):
        super().__init__(scope, id, **kwargs)

        # keys: "notifications", "notifications-dlq", "emails", "emails-dlq"
        self.queues: dict[str, sqs.Queue] = {}

        # ----------------------------------------------------------------
        # Helper: create FIFO queue + FIFO DLQ pair
        # ----------------------------------------------------------------
        def make_fifo_queue(name: str, construct_id: str) -> sqs.Queue:
            dlq = sqs.Queue(
                self, f"{construct_id}Dlq",
                queue_name=f"{QUEUE_PREFIX}-{name}-dlq.fifo",
                fifo=True,
                content_based_deduplication=True,
                retention_period=RETENTION_PERIOD,
            )
            queue = sqs.Queue(
                self, f"{construct_id}Queue",
                queue_name=f"{QUEUE_PREFIX}-{name}.fifo",
                fifo=True,
                content_based_deduplication=True,
                visibility_timeout=VISIBILITY_TIMEOUT,
                retention_period=RETENTION_PERIOD,
                dead_letter_queue=sqs.DeadLetterQueue(
                    max_receive_count=MAX_RECEIVE_COUNT,
                    queue=dlq,
                ),
            )
            self.queues[name] = queue
            self.queues[f"{name}-dlq"] = dlq
            return queue

        self.notifications_queue = make_fifo_queue("notifications", "Notifications")
        self.emails_queue = make_fifo_queue("emails", "Emails")

        for name, queue in self.queues.items():
            output_id = "".join(part.title() for part in name.split("-"))
            cdk.CfnOutput(self, f"{output_id}QueueUrl", value=queue.queue_url)
            cdk.CfnOutput(self, f"{output_id}QueueArn", value=queue.queue_arn)
