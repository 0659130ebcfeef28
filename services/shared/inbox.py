"""
In-App Inbox Recording
======================
Before a notification is forwarded to the Emails Queue, the Notification
Processor records a short in-app entry (title, body text, link) by POSTing
to the web app's store endpoint.

This is best-effort. The email is the durable channel; an inbox entry that
fails to store is logged and forgotten, and never blocks forwarding. A
duplicate (the store already has this id) is the expected outcome of a
redelivered batch and is logged at info level.
"""
from __future__ import annotations

from dataclasses import dataclass

import requests

from shared.logger import get_logger
from shared.messages import NotificationMessage, NotificationType

logger = get_logger(__name__)

_STORE_TIMEOUT_SECONDS = 5


@dataclass(frozen=True)
class InboxEntry:
    title: str
    body_text: str
    url: str = "/"


def build_inbox_entry(message: NotificationMessage) -> InboxEntry:
    m = message.metadata
    kind = message.notification_type

    if kind is NotificationType.WELCOME:
        return InboxEntry(
            "Welcome to EduMatch!",
            f"Welcome {m.get('firstName') or 'User'}! Your account has been created successfully.",
            "/profile/create",
        )
    if kind is NotificationType.PROFILE_CREATED:
        return InboxEntry(
            "Profile Created Successfully!",
            f"Your {m.get('role') or 'profile'} profile has been created and is now live.",
            "/profile/view",
        )
    if kind is NotificationType.PAYMENT_DEADLINE:
        return InboxEntry(
            "Payment Deadline Reminder",
            f"Your {m.get('planName') or 'subscription'} payment is due on "
            f"{m.get('deadlineDate') or 'soon'}.",
            "/pricing",
        )
    if kind is NotificationType.APPLICATION_STATUS_UPDATE:
        status = str(m.get("newStatus") or "updated").replace("_", " ").lower()
        return InboxEntry(
            "Application Status Update",
            f"Your application to {m.get('programName') or 'a programme'} is now {status}.",
            "/applicant-profile/view",
        )
    if kind in (NotificationType.PAYMENT_SUCCESS, NotificationType.PAYMENT_FAILED):
        ok = kind is NotificationType.PAYMENT_SUCCESS
        plan = m.get("planName") or "subscription"
        return InboxEntry(
            "Payment Successful" if ok else "Payment Failed",
            f"Your payment for {plan} was {'received' if ok else 'not processed'}.",
            "/pricing",
        )
    if kind is NotificationType.WISHLIST_DEADLINE:
        title = m.get("postTitle") or "An item in your wishlist"
        days = m.get("daysRemaining") or 0
        days_text = "1 day" if days == 1 else f"{days} days"
        post_type = str(m.get("postType") or "programme")
        section = {"scholarship": "scholarships", "research-lab": "research-labs"}.get(post_type, "programmes")
        return InboxEntry(
            f"Deadline Approaching - {m.get('postTitle') or 'Wishlist Item'}",
            f'Don\'t miss this opportunity! "{title}" is approaching its deadline in {days_text}. '
            "Make sure to submit your application before it expires!",
            f"/explore/{section}/{m.get('postId') or ''}",
        )
    return InboxEntry("New Notification", "You have a new notification from EduMatch.")


class InboxRecorder:
    def __init__(self, store_url: str, session: requests.Session | None = None):
        self.store_url = store_url
        self._session = session or requests.Session()

    def record(self, message: NotificationMessage) -> bool:
        """Store one inbox entry. Returns False on any failure, never raises."""
        try:
            entry = build_inbox_entry(message)
        except Exception:
            logger.exception("Could not build inbox entry, continuing")
            return False

        payload = {
            "id": message.id,
            "userId": message.user_id,
            "type": message.type,
            "title": entry.title,
            "bodyText": entry.body_text,
            "url": entry.url,
            "createdAt": message.timestamp,
            "payload": message.metadata,
        }
        try:
            resp = self._session.post(self.store_url, json=payload, timeout=_STORE_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            logger.warning("Inbox store unreachable, continuing", extra={"error": str(e)})
            return False

        if resp.status_code == 409:
            logger.info("Inbox entry already stored")
            return True
        if not 200 <= resp.status_code < 300:
            logger.warning(
                "Inbox store rejected notification, continuing",
                extra={"status_code": resp.status_code},
            )
            return False
        return True
