#!/usr/bin/env python3
"""
Run the whole notification pipeline in one process, no AWS required.

    producer -> LocalFifoQueue (notifications) -> NotificationProcessor
             -> LocalFifoQueue (emails) -> EmailProcessor -> HTTP endpoint

Without --fallback-endpoint a throwaway HTTP sink is started on localhost and
prints every email it receives. Point --primary-endpoint at an unreachable
address to watch the fallback path:

  python scripts/run_local_pipeline.py
  python scripts/run_local_pipeline.py --primary-endpoint http://127.0.0.1:9/send
"""
import argparse
import json
import os
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

os.environ.setdefault("AWS_XRAY_SDK_ENABLED", "false")
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "services"))

from email_processor.handler import EmailProcessor  # noqa: E402
from notification_processor.handler import NotificationProcessor  # noqa: E402
from shared.config import EmailProcessorSettings  # noqa: E402
from shared.local_queue import LocalFifoQueue  # noqa: E402
from shared.poller import drain  # noqa: E402
from shared.producer import NotificationPublisher  # noqa: E402

SAMPLE_NOTIFICATIONS = [
    ("WELCOME", "u-1", "ana@example.com", {"firstName": "Ana", "lastName": "Silva"}),
    ("PAYMENT_DEADLINE", "u-1", "ana@example.com",
     {"planName": "Premium", "deadlineDate": "2025-03-05", "amount": 49.99, "currency": "usd"}),
    ("APPLICATION_STATUS_UPDATE", "u-2", "ben@example.com",
     {"programName": "MSc Data Science", "newStatus": "ACCEPTED", "institutionName": "TU Delft"}),
    ("SUPPORT_REPLY", "u-2", "ben@example.com", {"replyMessage": "Thanks for reaching out"}),
]


class _SinkHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        email = json.loads(self.rfile.read(length))
        print(f"  [sink] to={email['to']} subject={email['subject']!r}")
        body = json.dumps({"messageId": f"local-{threading.get_ident()}"}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the EduMatch pipeline locally")
    parser.add_argument("--primary-endpoint")
    parser.add_argument("--fallback-endpoint")
    args = parser.parse_args()

    sink = None
    fallback = args.fallback_endpoint
    if not fallback:
        sink = HTTPServer(("127.0.0.1", 0), _SinkHandler)
        threading.Thread(target=sink.serve_forever, daemon=True).start()
        fallback = f"http://127.0.0.1:{sink.server_port}/api/notifications/send-email"

    notifications = LocalFifoQueue.with_dead_letter_queue("edumatch-notifications.fifo")
    emails = LocalFifoQueue.with_dead_letter_queue("edumatch-emails.fifo")

    publisher = NotificationPublisher(notifications)
    for kind, user_id, email, metadata in SAMPLE_NOTIFICATIONS:
        publisher.notify(kind, user_id, email, **metadata)

    settings = EmailProcessorSettings(
        email_fallback_endpoint=fallback,
        email_primary_endpoint=args.primary_endpoint,
    )
    notification_processor = NotificationProcessor(emails)
    email_processor = EmailProcessor.from_settings(settings)

    print("Notifications queue:")
    forwarded = drain(notifications, notification_processor.process_batch)
    print(f"  forwarded {forwarded.acknowledged}/{forwarded.received}")

    print("Emails queue:")
    sent = drain(emails, email_processor.process_batch)
    print(f"  acknowledged {sent.acknowledged}/{sent.received}, failed {sent.failed}")

    if sink is not None:
        sink.shutdown()
    return 0 if sent.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
