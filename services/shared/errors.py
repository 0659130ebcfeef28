"""
Pipeline Error Taxonomy
=======================
Every failure the processors can hit maps to one of these classes, and the
class decides what the queue does next:

  MessageValidationError  → raise, redelivered, DLQ after maxReceiveCount
  QueuePublishError       → raise, whole batch redelivered (dedup by id downstream)
  TemplateRenderError     → that record fails, redelivered, DLQ after maxReceiveCount
  EmailDeliveryError      → primary AND fallback failed, record redelivered
  ConfigurationError      → cold start fails loudly, nothing is consumed

An unknown notification type is deliberately NOT in this list: retrying
cannot create a missing template, so the Email Processor acknowledges it.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for notification pipeline failures."""


class ConfigurationError(PipelineError):
    """Required environment configuration is missing or invalid."""


class MessageValidationError(PipelineError):
    """A queue message body is not valid JSON or not a valid envelope."""

    def __init__(self, reason: str, message_id: str | None = None):
        self.reason = reason
        self.message_id = message_id
        where = f" (message {message_id})" if message_id else ""
        super().__init__(f"Invalid notification message{where}: {reason}")


class QueuePublishError(PipelineError):
    """A message could not be durably stored on a queue."""

    def __init__(self, queue_name: str, message_id: str, reason: str):
        self.queue_name = queue_name
        self.message_id = message_id
        super().__init__(f"Failed to publish {message_id} to {queue_name}: {reason}")


class TemplateRenderError(PipelineError):
    """A registered template raised while rendering a job's metadata."""

    def __init__(self, notification_type: str, reason: str):
        self.notification_type = notification_type
        super().__init__(f"Template for {notification_type} failed to render: {reason}")


class EmailDeliveryError(PipelineError):
    """Every configured delivery endpoint failed for one email."""

    def __init__(self, recipient: str, attempts: list[str]):
        self.recipient = recipient
        self.attempts = attempts
        super().__init__(
            f"Email to {recipient} not delivered after {len(attempts)} attempt(s): "
            + "; ".join(attempts)
        )
