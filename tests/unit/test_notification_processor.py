"""
Unit tests for the Notification Processor: validate, record inbox entry,
forward the same envelope to the Emails Queue.
"""
import json
from unittest.mock import MagicMock

import pytest
import requests

import sys
sys.path.insert(0, "services")

from shared.errors import MessageValidationError, QueuePublishError
from shared.inbox import InboxRecorder, build_inbox_entry
from shared.queues import QueueRecord

STORE_URL = "https://edumatch.test/api/notifications/store"


def _record(message_id, body, group_id="a@x.com"):
    return QueueRecord(message_id=message_id, receipt_handle=f"rh-{message_id}", body=body, group_id=group_id)


def _records(*messages):
    return [_record(f"sqs-{m.id}", m.to_json(), m.user_email) for m in messages]


@pytest.fixture
def processor(emails_queue):
    from notification_processor.handler import NotificationProcessor
    return NotificationProcessor(emails_queue)


def test_forwards_same_envelope_to_emails_queue(processor, emails_queue, message_factory):
    msg = message_factory(id="n1", type="WELCOME", user_email="a@x.com")

    processor.process_batch(_records(msg))

    [record] = emails_queue.receive()
    assert json.loads(record.body) == json.loads(msg.to_json())
    assert record.group_id == "a@x.com"
    assert record.attributes["Type"] == "WELCOME"


def test_forwarding_preserves_order_within_group(processor, emails_queue, message_factory):
    msgs = [message_factory(id=f"n{i}", user_email="a@x.com") for i in (1, 2, 3)]

    processor.process_batch(_records(*msgs))

    assert [json.loads(r.body)["id"] for r in emails_queue.peek()] == ["n1", "n2", "n3"]


def test_redelivered_batch_does_not_duplicate_jobs(processor, emails_queue, message_factory):
    """Whole-batch retry after a partial forward is safe: the Emails Queue dedups by id."""
    batch = _records(message_factory(id="n1"), message_factory(id="n2", user_email="b@x.com"))

    processor.process_batch(batch)
    processor.process_batch(batch)

    assert len(emails_queue.peek()) == 2


def test_malformed_record_fails_the_whole_batch(processor, emails_queue, message_factory):
    batch = [_record("sqs-bad", "{not json"), *_records(message_factory(id="n2"))]

    with pytest.raises(MessageValidationError) as exc:
        processor.process_batch(batch)

    assert exc.value.message_id == "sqs-bad"
    assert emails_queue.peek() == []


def test_publish_failure_raises(message_factory):
    from notification_processor.handler import NotificationProcessor
    queue = MagicMock()
    queue.publish.side_effect = QueuePublishError("edumatch-emails.fifo", "n1", "throttled")

    with pytest.raises(QueuePublishError):
        NotificationProcessor(queue).process_batch(_records(message_factory(id="n1")))


def test_unknown_type_is_forwarded(processor, emails_queue, message_factory):
    processor.process_batch(_records(message_factory(id="n1", type="NEWSLETTER")))
    assert len(emails_queue.peek()) == 1


# ---------------------------------------------------------------------------
# Inbox recording
# ---------------------------------------------------------------------------

def test_inbox_entry_is_recorded_before_forwarding(emails_queue, http_session, message_factory):
    from notification_processor.handler import NotificationProcessor
    processor = NotificationProcessor(emails_queue, InboxRecorder(STORE_URL, session=http_session))

    processor.process_batch(_records(message_factory(id="n1", metadata={"firstName": "Ana"})))

    [call] = http_session.calls_to(STORE_URL)
    assert call.json["id"] == "n1"
    assert call.json["title"] == "Welcome to EduMatch!"
    assert call.json["url"] == "/profile/create"
    assert len(emails_queue.peek()) == 1


@pytest.mark.parametrize("failure", [
    requests.ConnectionError("store down"),
    requests.Timeout("slow"),
])
def test_inbox_failure_never_blocks_forwarding(emails_queue, http_session, message_factory, failure):
    from notification_processor.handler import NotificationProcessor
    http_session.route(STORE_URL, failure)
    processor = NotificationProcessor(emails_queue, InboxRecorder(STORE_URL, session=http_session))

    processor.process_batch(_records(message_factory(id="n1")))

    assert len(emails_queue.peek()) == 1


@pytest.mark.parametrize("kind, metadata", [
    ("APPLICATION_STATUS_UPDATE", {"newStatus": 5, "programName": "MSc Physics"}),
    ("WISHLIST_DEADLINE", {"postType": ["scholarship"], "postTitle": "Erasmus", "postId": "p1"}),
])
def test_odd_metadata_values_still_forwarded(emails_queue, http_session, message_factory, kind, metadata):
    from notification_processor.handler import NotificationProcessor
    processor = NotificationProcessor(emails_queue, InboxRecorder(STORE_URL, session=http_session))

    processor.process_batch(_records(message_factory(id="n1", type=kind, metadata=metadata)))

    assert len(http_session.calls_to(STORE_URL)) == 1
    assert len(emails_queue.peek()) == 1


def test_inbox_entry_build_error_never_blocks_forwarding(monkeypatch, emails_queue, http_session, message_factory):
    from notification_processor.handler import NotificationProcessor
    import shared.inbox

    def broken(message):
        raise KeyError("title")

    monkeypatch.setattr(shared.inbox, "build_inbox_entry", broken)
    recorder = InboxRecorder(STORE_URL, session=http_session)
    processor = NotificationProcessor(emails_queue, recorder)

    assert recorder.record(message_factory(id="n0")) is False
    processor.process_batch(_records(message_factory(id="n1")))

    assert http_session.calls_to(STORE_URL) == []
    assert len(emails_queue.peek()) == 1


def test_inbox_rejection_and_duplicate(http_session, respond, message_factory):
    recorder = InboxRecorder(STORE_URL, session=http_session)

    http_session.route(STORE_URL, respond(500))
    assert recorder.record(message_factory()) is False

    http_session.route(STORE_URL, respond(409))
    assert recorder.record(message_factory()) is True


def test_inbox_entries_per_type(message_factory):
    deadline = build_inbox_entry(message_factory(
        type="WISHLIST_DEADLINE",
        metadata={"postTitle": "Lab X", "postType": "research-lab", "postId": "p1", "daysRemaining": 1},
    ))
    assert deadline.title == "Deadline Approaching - Lab X"
    assert "1 day" in deadline.body_text
    assert deadline.url == "/explore/research-labs/p1"

    fallback = build_inbox_entry(message_factory(type="SUPPORT_REPLY", metadata={}))
    assert fallback.title == "New Notification"
    assert fallback.url == "/"


# ---------------------------------------------------------------------------
# Lambda entry point
# ---------------------------------------------------------------------------

def _lambda_event(*messages):
    return {"Records": [
        {
            "messageId": f"sqs-{m.id}",
            "receiptHandle": f"rh-{m.id}",
            "body": m.to_json(),
            "attributes": {"MessageGroupId": m.user_email, "ApproximateReceiveCount": "1"},
            "messageAttributes": {},
        }
        for m in messages
    ]}


def test_handler_forwards_batch(monkeypatch, emails_queue, message_factory):
    import notification_processor.handler as handler_module
    from notification_processor.handler import NotificationProcessor
    monkeypatch.setattr(handler_module, "_processor", NotificationProcessor(emails_queue))

    result = handler_module.handler(_lambda_event(message_factory(id="n1")), None)

    assert result == {"forwarded": 1}
    assert len(emails_queue.peek()) == 1


def test_handler_raises_so_batch_is_redelivered(monkeypatch, emails_queue):
    import notification_processor.handler as handler_module
    from notification_processor.handler import NotificationProcessor
    monkeypatch.setattr(handler_module, "_processor", NotificationProcessor(emails_queue))
    event = {"Records": [{"messageId": "sqs-1", "receiptHandle": "rh", "body": "oops"}]}

    with pytest.raises(MessageValidationError):
        handler_module.handler(event, None)


def test_processor_is_built_from_environment(monkeypatch):
    import notification_processor.handler as handler_module
    monkeypatch.setattr(handler_module, "_processor", None)
    monkeypatch.setenv("NOTIFICATION_STORE_ENDPOINT", STORE_URL)

    processor = handler_module._get_processor()

    assert processor.emails_queue.name == "edumatch-emails.fifo"
    assert processor.inbox.store_url == STORE_URL
