"""
Email Delivery Client
=====================
POSTs a rendered email as JSON `{to, subject, html, from}` to a delivery
endpoint, trying two endpoints in order:

  1. primary   same-environment endpoint, short timeout (2s by default).
               Skipped entirely when not configured.
  2. fallback  publicly reachable endpoint, no timeout override. The outer
               bound is the Lambda timeout / queue visibility timeout.

Any timeout, connection error or non-2xx response on the primary moves on to
the fallback. If the fallback fails too, EmailDeliveryError is raised and the
queue redelivers the job. There is no retry loop here: one attempt per
endpoint per delivery.

Endpoints are explicit configuration (EMAIL_PRIMARY_ENDPOINT,
EMAIL_FALLBACK_ENDPOINT); nothing is inferred from the runtime environment.
"""
from __future__ import annotations

from dataclasses import dataclass

import requests
from aws_xray_sdk.core import xray_recorder

from shared.config import EmailProcessorSettings
from shared.errors import EmailDeliveryError
from shared.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    from_: str

    def payload(self) -> dict:
        return {"to": self.to, "subject": self.subject, "html": self.html, "from": self.from_}


@dataclass(frozen=True)
class DeliveryReceipt:
    endpoint: str
    message_id: str | None = None
    used_fallback: bool = False


class EmailDeliveryClient:
    def __init__(
        self,
        fallback_url: str,
        primary_url: str | None = None,
        primary_timeout: float = 2.0,
        session: requests.Session | None = None,
        api_token: str | None = None,
    ):
        self.fallback_url = fallback_url
        self.primary_url = primary_url
        self.primary_timeout = primary_timeout
        self._session = session or requests.Session()
        self._headers = {"Content-Type": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"

    @classmethod
    def from_settings(
        cls, settings: EmailProcessorSettings, session: requests.Session | None = None
    ) -> "EmailDeliveryClient":
        return cls(
            fallback_url=settings.email_fallback_endpoint,
            primary_url=settings.email_primary_endpoint,
            primary_timeout=settings.email_primary_timeout_seconds,
            session=session,
            api_token=settings.email_api_token,
        )

    def send(self, email: OutboundEmail) -> DeliveryReceipt:
        attempts: list[str] = []

        if self.primary_url:
            with xray_recorder.in_subsegment("email_delivery_primary"):
                try:
                    message_id = self._post(self.primary_url, email, timeout=self.primary_timeout)
                    return DeliveryReceipt(endpoint=self.primary_url, message_id=message_id)
                except requests.RequestException as e:
                    attempts.append(f"primary: {e}")
                    logger.warning(
                        "Primary delivery endpoint failed, trying fallback",
                        extra={"endpoint": self.primary_url, "error": str(e)},
                    )

        with xray_recorder.in_subsegment("email_delivery_fallback"):
            try:
                message_id = self._post(self.fallback_url, email, timeout=None)
                return DeliveryReceipt(
                    endpoint=self.fallback_url,
                    message_id=message_id,
                    used_fallback=bool(self.primary_url),
                )
            except requests.RequestException as e:
                attempts.append(f"fallback: {e}")

        raise EmailDeliveryError(email.to, attempts)

    def _post(self, url: str, email: OutboundEmail, timeout: float | None) -> str | None:
        resp = self._session.post(url, json=email.payload(), headers=self._headers, timeout=timeout)
        if not 200 <= resp.status_code < 300:
            raise requests.HTTPError(f"{resp.status_code} from {url}", response=resp)
        return _message_id(resp)


def _message_id(resp: requests.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for key in ("messageId", "message_id", "id"):
        if body.get(key):
            return str(body[key])
    return None
