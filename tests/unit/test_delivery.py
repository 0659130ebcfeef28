"""
Delivery Fallback Tests
=======================
EmailDeliveryClient against a fake HTTP session.

Scenarios covered:
  1. Primary succeeds              -> one call, fallback untouched
  2. Primary times out             -> one primary call (2s), one fallback call (no timeout)
  3. Primary returns non-2xx       -> fallback
  4. Primary connection refused    -> fallback
  5. Both fail                     -> EmailDeliveryError listing both attempts
  6. No primary configured         -> straight to fallback
"""
import pytest
import requests

import sys
sys.path.insert(0, "services")

from shared.config import EmailProcessorSettings
from shared.delivery import EmailDeliveryClient, OutboundEmail
from shared.errors import EmailDeliveryError

PRIMARY = "http://primary.internal/send"
FALLBACK = "https://edumatch.test/send"

EMAIL = OutboundEmail(
    to="a@x.com",
    subject="Welcome to EduMatch, Ana!",
    html="<p>Hi</p>",
    from_="noreply@edumatch.com",
)


@pytest.fixture
def client(http_session):
    return EmailDeliveryClient(fallback_url=FALLBACK, primary_url=PRIMARY, session=http_session)


def test_primary_success_skips_fallback(client, http_session, respond):
    http_session.route(PRIMARY, respond(200, {"messageId": "ses-1"}))

    receipt = client.send(EMAIL)

    assert receipt.endpoint == PRIMARY
    assert receipt.message_id == "ses-1"
    assert not receipt.used_fallback
    assert len(http_session.calls) == 1
    call = http_session.calls[0]
    assert call.timeout == 2.0
    assert call.json == {
        "to": "a@x.com",
        "subject": "Welcome to EduMatch, Ana!",
        "html": "<p>Hi</p>",
        "from": "noreply@edumatch.com",
    }


def test_primary_timeout_falls_back_without_timeout(client, http_session):
    http_session.route(PRIMARY, requests.Timeout("read timed out"))

    receipt = client.send(EMAIL)

    assert receipt.endpoint == FALLBACK
    assert receipt.used_fallback
    [primary] = http_session.calls_to(PRIMARY)
    [fallback] = http_session.calls_to(FALLBACK)
    assert primary.timeout == 2.0
    assert fallback.timeout is None
    assert fallback.json == primary.json


@pytest.mark.parametrize("status", [400, 404, 500, 503])
def test_primary_non_2xx_falls_back(client, http_session, respond, status):
    http_session.route(PRIMARY, respond(status))

    receipt = client.send(EMAIL)

    assert receipt.endpoint == FALLBACK
    assert [c.url for c in http_session.calls] == [PRIMARY, FALLBACK]


def test_primary_connection_error_falls_back(client, http_session):
    http_session.route(PRIMARY, requests.ConnectionError("connection refused"))
    assert client.send(EMAIL).endpoint == FALLBACK


def test_both_endpoints_failing_raises(client, http_session, respond):
    http_session.route(PRIMARY, requests.Timeout("read timed out"))
    http_session.route(FALLBACK, respond(502))

    with pytest.raises(EmailDeliveryError) as exc:
        client.send(EMAIL)

    assert exc.value.recipient == "a@x.com"
    assert len(exc.value.attempts) == 2
    assert exc.value.attempts[0].startswith("primary")
    assert exc.value.attempts[1].startswith("fallback")
    assert len(http_session.calls) == 2


def test_no_primary_goes_straight_to_fallback(http_session):
    client = EmailDeliveryClient(fallback_url=FALLBACK, session=http_session)

    receipt = client.send(EMAIL)

    assert [c.url for c in http_session.calls] == [FALLBACK]
    assert receipt.endpoint == FALLBACK
    assert not receipt.used_fallback


def test_fallback_only_failure_lists_one_attempt(http_session):
    http_session.route(FALLBACK, requests.ConnectionError("no route"))
    client = EmailDeliveryClient(fallback_url=FALLBACK, session=http_session)

    with pytest.raises(EmailDeliveryError) as exc:
        client.send(EMAIL)
    assert len(exc.value.attempts) == 1


def test_2xx_without_json_body_is_still_delivered(client, http_session, respond):
    http_session.route(PRIMARY, respond(202))
    receipt = client.send(EMAIL)
    assert receipt.endpoint == PRIMARY
    assert receipt.message_id is None


def test_api_token_is_sent_as_bearer_header(http_session):
    client = EmailDeliveryClient(fallback_url=FALLBACK, session=http_session, api_token="tok")
    client.send(EMAIL)
    assert http_session.calls[0].headers["Authorization"] == "Bearer tok"


def test_from_settings_wires_endpoints_and_timeout(http_session):
    settings = EmailProcessorSettings(
        email_fallback_endpoint=FALLBACK,
        email_primary_endpoint=PRIMARY,
        email_primary_timeout_seconds=0.5,
    )
    client = EmailDeliveryClient.from_settings(settings, session=http_session)
    http_session.route(PRIMARY, requests.Timeout("slow"))

    client.send(EMAIL)

    assert http_session.calls[0].timeout == 0.5
    assert http_session.calls[1].url == FALLBACK
