"""
Pytest configuration and shared fixtures.
Unit tests use moto (AWS mocks in-process) for SQS and LocalFifoQueue with a
fake clock for queue semantics that depend on time.
Integration tests use LocalStack (real service emulation via Docker).
"""
import os

# Must be set before aws_xray_sdk is imported anywhere (no daemon in tests)
os.environ.setdefault("AWS_XRAY_SDK_ENABLED", "false")

import json
import sys
from types import SimpleNamespace

import boto3
import pytest
from moto import mock_aws

sys.path.insert(0, "services")

LOCALSTACK_ENDPOINT = os.environ.get("LOCALSTACK_ENDPOINT", "http://localhost:4566")
USE_LOCALSTACK = os.environ.get("USE_LOCALSTACK", "false").lower() == "true"

PRIMARY_URL = "http://primary.internal/api/notifications/send-email"
FALLBACK_URL = "https://edumatch.test/api/notifications/send-email"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Set fake AWS credentials so boto3 doesn't error in tests."""
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.setenv("EMAILS_QUEUE_URL", "https://sqs.us-east-1.amazonaws.com/123456789012/edumatch-emails.fifo")
    monkeypatch.setenv("EMAIL_FALLBACK_ENDPOINT", FALLBACK_URL)
    monkeypatch.delenv("EMAIL_PRIMARY_ENDPOINT", raising=False)
    monkeypatch.delenv("NOTIFICATION_STORE_ENDPOINT", raising=False)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------

@pytest.fixture
def notifications_queue(clock):
    from shared.local_queue import LocalFifoQueue
    return LocalFifoQueue.with_dead_letter_queue("edumatch-notifications.fifo", clock=clock)


@pytest.fixture
def emails_queue(clock):
    from shared.local_queue import LocalFifoQueue
    return LocalFifoQueue.with_dead_letter_queue("edumatch-emails.fifo", clock=clock)


@pytest.fixture
def sqs_client(aws_env):
    """moto-backed SQS client with both FIFO queues (and DLQs) created."""
    with mock_aws():
        client = boto3.client("sqs", region_name="us-east-1")
        for name in ("notifications", "emails"):
            dlq_url = client.create_queue(
                QueueName=f"edumatch-{name}-dlq.fifo",
                Attributes={"FifoQueue": "true", "ContentBasedDeduplication": "true"},
            )["QueueUrl"]
            dlq_arn = client.get_queue_attributes(
                QueueUrl=dlq_url, AttributeNames=["QueueArn"]
            )["Attributes"]["QueueArn"]
            client.create_queue(
                QueueName=f"edumatch-{name}.fifo",
                Attributes={
                    "FifoQueue": "true",
                    "ContentBasedDeduplication": "true",
                    "VisibilityTimeout": "300",
                    "RedrivePolicy": json.dumps({"deadLetterTargetArn": dlq_arn, "maxReceiveCount": 3}),
                },
            )
        yield client


@pytest.fixture
def queue_urls(sqs_client):
    return {
        name: sqs_client.get_queue_url(QueueName=f"edumatch-{name}.fifo")["QueueUrl"]
        for name in ("notifications", "notifications-dlq", "emails", "emails-dlq")
    }


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """
    Stands in for requests.Session. Every POST is recorded; the response for
    a URL is whatever was routed to it: a FakeResponse, an exception to raise,
    or a callable taking the JSON payload and returning either.
    Unrouted URLs answer 200 with a message id.
    """

    def __init__(self):
        self.calls = []
        self._routes = {}

    def route(self, url: str, behaviour) -> None:
        self._routes[url] = behaviour

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append(SimpleNamespace(url=url, json=json, headers=headers, timeout=timeout))
        behaviour = self._routes.get(url, FakeResponse(200, {"messageId": f"msg-{len(self.calls)}"}))
        if callable(behaviour):
            behaviour = behaviour(json)
        if isinstance(behaviour, Exception):
            raise behaviour
        return behaviour

    def calls_to(self, url: str) -> list:
        return [c for c in self.calls if c.url == url]


@pytest.fixture
def http_session():
    return FakeSession()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def make_message(id="n1", type="WELCOME", user_email="a@x.com", metadata=None, user_id="u1"):
    from shared.messages import NotificationMessage
    return NotificationMessage(
        id=id,
        type=type,
        user_id=user_id,
        user_email=user_email,
        metadata={"firstName": "Ana"} if metadata is None else metadata,
    )


@pytest.fixture
def message_factory():
    return make_message


@pytest.fixture
def respond():
    """respond(503) / respond(200, {"messageId": "x"}) builds a fake HTTP response."""
    return FakeResponse
