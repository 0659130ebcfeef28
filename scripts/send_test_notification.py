#!/usr/bin/env python3
"""
Publish one sample notification onto the Notifications Queue.

  python scripts/send_test_notification.py --email ana@example.com --first-name Ana
  python scripts/send_test_notification.py --type PAYMENT_DEADLINE \\
      --metadata '{"planName": "Premium", "deadlineDate": "2025-03-05", "amount": 49.99, "currency": "usd"}'

Queue URL comes from --queue-url or NOTIFICATIONS_QUEUE_URL.
"""
import argparse
import json
import os
import sys

import boto3

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "services"))

from shared.messages import NotificationType  # noqa: E402
from shared.producer import NotificationPublisher, new_notification  # noqa: E402
from shared.queues import SqsFifoQueue  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Send a test EduMatch notification")
    parser.add_argument("--queue-url", default=os.environ.get("NOTIFICATIONS_QUEUE_URL"))
    parser.add_argument("--endpoint-url", default=os.environ.get("AWS_ENDPOINT_URL"))
    parser.add_argument("--type", default="WELCOME", choices=[t.value for t in NotificationType])
    parser.add_argument("--user-id", default="test-user")
    parser.add_argument("--email", default="test@example.com")
    parser.add_argument("--first-name", default="Test")
    parser.add_argument("--metadata", default="{}", help="JSON object merged into metadata")
    args = parser.parse_args()

    if not args.queue_url:
        parser.error("--queue-url or NOTIFICATIONS_QUEUE_URL is required")

    metadata = {"firstName": args.first_name, **json.loads(args.metadata)}
    message = new_notification(args.type, args.user_id, args.email, metadata)

    client = boto3.client("sqs", endpoint_url=args.endpoint_url)
    publisher = NotificationPublisher(SqsFifoQueue(args.queue_url, client=client))

    print(f"Publishing {message.type} {message.id} for {message.user_email}")
    if not publisher.publish(message):
        print("Publish failed, see log output above.")
        return 1
    print("Queued.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
