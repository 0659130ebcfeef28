#!/usr/bin/env python3
"""
Show the depth of every EduMatch notification queue and its DLQ.

Run against AWS:        python scripts/check_queues.py
Run against LocalStack: python scripts/check_queues.py --endpoint-url http://localhost:4566
Inspect DLQ contents:   python scripts/check_queues.py --peek 5

--peek receives DLQ messages with a zero visibility timeout, so they stay on
the DLQ. DLQs have no redrive policy; receiving from them is safe.
"""
import argparse
import json
import os
import sys

import boto3

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "services"))

from shared.queues import SqsFifoQueue  # noqa: E402

QUEUE_NAMES = [
    "edumatch-notifications.fifo",
    "edumatch-notifications-dlq.fifo",
    "edumatch-emails.fifo",
    "edumatch-emails-dlq.fifo",
]


def main() -> int:
    parser = argparse.ArgumentParser(description="EduMatch queue depths")
    parser.add_argument("--endpoint-url", default=os.environ.get("AWS_ENDPOINT_URL"))
    parser.add_argument("--region", default=os.environ.get("AWS_DEFAULT_REGION", "us-east-1"))
    parser.add_argument("--peek", type=int, default=0, help="Show up to N messages from each DLQ")
    args = parser.parse_args()

    client = boto3.client("sqs", endpoint_url=args.endpoint_url, region_name=args.region)
    dlq_messages = 0

    print(f"{'queue':<36} {'visible':>8} {'in flight':>10}")
    for name in QUEUE_NAMES:
        try:
            url = client.get_queue_url(QueueName=name)["QueueUrl"]
        except client.exceptions.QueueDoesNotExist:
            print(f"{name:<36} {'missing':>8}")
            continue

        queue = SqsFifoQueue(url, client=client)
        depth = queue.depth()
        print(f"{name:<36} {depth.visible:>8} {depth.in_flight:>10}")

        if name.endswith("-dlq.fifo"):
            dlq_messages += depth.visible + depth.in_flight
            if args.peek and depth.visible:
                for record in queue.receive(args.peek, visibility_timeout=0):
                    body = json.loads(record.body)
                    print(f"    {body.get('id')}  {body.get('type')}  {body.get('userEmail')}")

    if dlq_messages:
        print(f"\n{dlq_messages} message(s) in dead-letter queues need attention.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
