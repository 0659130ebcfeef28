"""
EduMatch Notification Message Schemas
=====================================
The JSON envelope that travels through BOTH queues is defined here, once.
The Notifications Queue carries it as a NotificationMessage; the Emails Queue
carries the very same envelope as an EmailJob. Nothing is transformed in
between, so the dedup key (`id`) and group key (`userEmail`) survive the hop.

Wire format is camelCase (the producers are TypeScript); Python attributes
are snake_case via aliases.

`metadata` is an open object on the wire but a tagged union in code: the
`type` field picks one of the *Metadata models below, each carrying only the
fields its template reads. Every field is optional so a template can fall
back to placeholder text instead of failing the whole batch.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from shared.errors import MessageValidationError

# SQS caps MessageDeduplicationId and MessageGroupId at 128 characters
_SQS_ID_MAX_LENGTH = 128


class NotificationType(str, Enum):
    WELCOME = "WELCOME"
    PROFILE_CREATED = "PROFILE_CREATED"
    PAYMENT_DEADLINE = "PAYMENT_DEADLINE"
    APPLICATION_STATUS_UPDATE = "APPLICATION_STATUS_UPDATE"
    DOCUMENT_UPDATED = "DOCUMENT_UPDATED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    SUBSCRIPTION_EXPIRING = "SUBSCRIPTION_EXPIRING"
    USER_BANNED = "USER_BANNED"
    SESSION_REVOKED = "SESSION_REVOKED"
    WISHLIST_DEADLINE = "WISHLIST_DEADLINE"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"
    SUPPORT_REPLY = "SUPPORT_REPLY"
    POST_STATUS_UPDATE = "POST_STATUS_UPDATE"

    @classmethod
    def parse(cls, value: str) -> "NotificationType | None":
        try:
            return cls(value)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Per-type metadata (the tagged union)
# ---------------------------------------------------------------------------

class NotificationMetadata(BaseModel):
    """Base for every metadata variant. Unknown keys are kept, not rejected."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )


class _PersonMetadata(NotificationMetadata):
    first_name: str | None = None
    last_name: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class _PaymentMetadata(NotificationMetadata):
    subscription_id: str | None = None
    plan_name: str | None = None
    amount: float | None = None
    currency: str | None = None


class WelcomeMetadata(_PersonMetadata):
    pass


class ProfileCreatedMetadata(_PersonMetadata):
    profile_id: str | None = None
    role: str | None = None


class PaymentDeadlineMetadata(_PaymentMetadata):
    deadline_date: str | None = None


class ApplicationStatusMetadata(NotificationMetadata):
    application_id: str | None = None
    program_name: str | None = None
    old_status: str | None = None
    new_status: str | None = None
    institution_name: str | None = None
    message: str | None = None


class DocumentUpdatedMetadata(NotificationMetadata):
    application_id: str | None = None
    program_name: str | None = None
    applicant_name: str | None = None
    institution_name: str | None = None
    document_count: int | None = None


class PaymentSuccessMetadata(_PaymentMetadata):
    transaction_id: str | None = None


class PaymentFailedMetadata(_PaymentMetadata):
    failure_reason: str | None = None


class SubscriptionExpiringMetadata(NotificationMetadata):
    subscription_id: str | None = None
    plan_name: str | None = None
    expiry_date: str | None = None
    days_remaining: int | None = None


class UserBannedMetadata(_PersonMetadata):
    reason: str | None = None
    banned_by: str | None = None
    banned_until: str | None = None  # absent = permanent


class SessionRevokedMetadata(_PersonMetadata):
    reason: str | None = None
    revoked_by: str | None = None
    device_info: str | None = None


class WishlistDeadlineMetadata(NotificationMetadata):
    post_id: str | None = None
    post_title: str | None = None
    deadline_date: str | None = None
    days_remaining: int | None = None
    post_type: str | None = None  # programme | scholarship | research-lab
    institution_name: str | None = None


class PasswordChangedMetadata(_PersonMetadata):
    change_time: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class AccountDeletedMetadata(_PersonMetadata):
    deletion_time: str | None = None


class SupportReplyMetadata(_PersonMetadata):
    support_id: str | None = None
    original_subject: str | None = None
    original_message: str | None = None
    reply_message: str | None = None
    replied_by: str | None = None
    replied_at: str | None = None


class PostStatusUpdateMetadata(NotificationMetadata):
    post_id: str | None = None
    post_title: str | None = None
    post_type: str | None = None
    institution_name: str | None = None
    old_status: str | None = None
    new_status: str | None = None
    rejection_reason: str | None = None
    post_url: str | None = None


METADATA_MODELS: MappingProxyType[NotificationType, type[NotificationMetadata]] = MappingProxyType({
    NotificationType.WELCOME: WelcomeMetadata,
    NotificationType.PROFILE_CREATED: ProfileCreatedMetadata,
    NotificationType.PAYMENT_DEADLINE: PaymentDeadlineMetadata,
    NotificationType.APPLICATION_STATUS_UPDATE: ApplicationStatusMetadata,
    NotificationType.DOCUMENT_UPDATED: DocumentUpdatedMetadata,
    NotificationType.PAYMENT_SUCCESS: PaymentSuccessMetadata,
    NotificationType.PAYMENT_FAILED: PaymentFailedMetadata,
    NotificationType.SUBSCRIPTION_EXPIRING: SubscriptionExpiringMetadata,
    NotificationType.USER_BANNED: UserBannedMetadata,
    NotificationType.SESSION_REVOKED: SessionRevokedMetadata,
    NotificationType.WISHLIST_DEADLINE: WishlistDeadlineMetadata,
    NotificationType.PASSWORD_CHANGED: PasswordChangedMetadata,
    NotificationType.ACCOUNT_DELETED: AccountDeletedMetadata,
    NotificationType.SUPPORT_REPLY: SupportReplyMetadata,
    NotificationType.POST_STATUS_UPDATE: PostStatusUpdateMetadata,
})


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

class NotificationMessage(BaseModel):
    """
    The unit of work on both queues.

    id:        dedup key. Reusing it within the queue's dedup window collapses
               the second publish. Producers must make it unique per event.
    userEmail: ordering group key. One message per recipient in flight.
    type:      kept as a plain string so a kind this build has never heard of
               still flows through; the Email Processor skips it there.
    timestamp: informational only, never used for ordering.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1, max_length=_SQS_ID_MAX_LENGTH)
    type: str = Field(min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    user_email: str = Field(
        alias="userEmail",
        max_length=_SQS_ID_MAX_LENGTH,
        pattern=r"^[^@\s]+@[^@\s]+$",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def notification_type(self) -> NotificationType | None:
        return NotificationType.parse(self.type)

    def typed_metadata(self) -> NotificationMetadata:
        """Validate `metadata` against the variant selected by `type`."""
        model = METADATA_MODELS.get(self.notification_type, NotificationMetadata)
        return model.model_validate(self.metadata)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def queue_attributes(self) -> dict[str, dict[str, str]]:
        """SQS message attributes, kept outside the body for routing and filtering."""
        return {
            "Type": {"DataType": "String", "StringValue": self.type},
            "UserEmail": {"DataType": "String", "StringValue": self.user_email},
        }

    @classmethod
    def from_json(cls, body: str, message_id: str | None = None) -> "NotificationMessage":
        """Parse a queue body. Raises MessageValidationError, never ValidationError."""
        try:
            payload = json.loads(body)
        except (TypeError, json.JSONDecodeError) as e:
            raise MessageValidationError(f"body is not JSON ({e})", message_id) from e
        if not isinstance(payload, dict):
            raise MessageValidationError("body is not a JSON object", message_id)
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise MessageValidationError(f"invalid fields: {fields}", message_id) from e


# Same logical event, forwarded onto the Emails Queue
EmailJob = NotificationMessage
