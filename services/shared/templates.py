"""
Email Templates
===============
Maps each notification kind to a pure render function:

    (typed metadata, links) -> RenderedEmail(subject, html)

The mapping lives in an immutable TemplateRegistry that is built once and
injected into the Email Processor. Nothing mutates it at runtime; tests that
need a different template call `with_templates()` and get a new registry.

Render functions never assume a metadata field is present. A missing amount
renders "Contact for details", a missing name renders a neutral greeting.
Anything that still goes wrong is raised as TemplateRenderError so only that
one job fails, never the batch.

HTML is rendered by Jinja2 with autoescaping on: every metadata value is
user-controlled text (names, institution messages) and must not inject markup.
"""
from __future__ import annotations

import functools
import os
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Mapping

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from shared.errors import TemplateRenderError
from shared.messages import (
    ApplicationStatusMetadata,
    NotificationMessage,
    NotificationMetadata,
    NotificationType,
    PasswordChangedMetadata,
    PaymentDeadlineMetadata,
    PaymentFailedMetadata,
    PaymentSuccessMetadata,
    ProfileCreatedMetadata,
    SessionRevokedMetadata,
    SubscriptionExpiringMetadata,
    UserBannedMetadata,
    WelcomeMetadata,
    WishlistDeadlineMetadata,
)

BRAND_NAME = "EduMatch"
SUPPORT_EMAIL = "support@edumatch.com"
CONTACT_FOR_DETAILS = "Contact for details"

_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "email_templates")

_env = Environment(
    loader=FileSystemLoader(_TEMPLATE_DIR),
    autoescape=True,
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


@dataclass(frozen=True)
class Links:
    """Absolute links into the web app, rooted at APP_BASE_URL."""
    base_url: str

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


TemplateFn = Callable[[Any, Links], RenderedEmail]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_amount(amount: float | None, currency: str | None) -> str:
    if amount is None:
        return CONTACT_FOR_DETAILS
    value = f"{amount:,.2f}"
    return f"{currency.upper()} {value}" if currency else value


def format_date(value: str | None, fallback: str = "soon") -> str:
    """ISO-8601 → 'March 05, 2025'. Unparseable input is shown as given."""
    if not value:
        return fallback
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%B %d, %Y")


def _days(count: int | None) -> str:
    if count is None:
        return "a few days"
    return "1 day" if count == 1 else f"{count} days"


def _page(
    body_template: str,
    *,
    title: str,
    links: Links,
    preheader: str = "",
    cta: tuple[str, str] | None = None,
    **context: Any,
) -> str:
    body = _env.get_template(body_template).render(**context)
    return _env.get_template("layout.html.j2").render(
        title=title,
        preheader=preheader,
        body=body,
        cta={"label": cta[0], "url": cta[1]} if cta else None,
        brand_name=BRAND_NAME,
        support_email=SUPPORT_EMAIL,
        help_center_url=links.url("/support"),
    )


# ---------------------------------------------------------------------------
# Render functions, one per notification kind
# ---------------------------------------------------------------------------

def render_welcome(m: WelcomeMetadata, links: Links) -> RenderedEmail:
    subject = f"Welcome to EduMatch, {m.first_name}!" if m.first_name else "Welcome to EduMatch!"
    html = _page(
        "welcome.html.j2",
        title="Welcome to EduMatch",
        preheader="Your journey to global education starts here",
        cta=("Complete Your Profile", links.url("/profile/create")),
        links=links,
        name=m.full_name or "there",
    )
    return RenderedEmail(subject, html)


def render_profile_created(m: ProfileCreatedMetadata, links: Links) -> RenderedEmail:
    html = _page(
        "profile_created.html.j2",
        title="Profile Created Successfully",
        cta=("Start Exploring", links.url("/explore")),
        links=links,
        first_name=m.first_name or "there",
        role=m.role or "",
    )
    return RenderedEmail("Profile Created Successfully - Welcome to EduMatch!", html)


def render_payment_deadline(m: PaymentDeadlineMetadata, links: Links) -> RenderedEmail:
    plan = m.plan_name or "your"
    html = _page(
        "payment_deadline.html.j2",
        title="Payment Deadline Reminder",
        cta=("Make Payment", links.url("/pricing")),
        links=links,
        plan_name=m.plan_name or "Subscription",
        deadline=format_date(m.deadline_date),
        amount=format_amount(m.amount, m.currency),
    )
    return RenderedEmail(f"Payment Deadline Reminder - {plan} Subscription", html)


def render_application_status(m: ApplicationStatusMetadata, links: Links) -> RenderedEmail:
    program = m.program_name or "Your Application"
    html = _page(
        "application_status.html.j2",
        title="Application Status Update",
        cta=("View Application", links.url("/applicant-profile/view")),
        links=links,
        program_name=program,
        institution_name=m.institution_name or "the institution",
        old_status=m.old_status or "",
        new_status=(m.new_status or "").lower(),
        new_status_label=(m.new_status or "updated").replace("_", " ").title(),
        custom_message=m.message or "",
    )
    return RenderedEmail(f"Application Status Update - {program}", html)


def render_payment_success(m: PaymentSuccessMetadata, links: Links) -> RenderedEmail:
    plan = m.plan_name or "EduMatch"
    html = _page(
        "payment_success.html.j2",
        title="Payment Successful",
        cta=("Go to Dashboard", links.url("/explore")),
        links=links,
        plan_name=plan,
        amount=format_amount(m.amount, m.currency),
        transaction_id=m.transaction_id or "",
    )
    return RenderedEmail(f"Payment Successful - {plan} Subscription", html)


def render_payment_failed(m: PaymentFailedMetadata, links: Links) -> RenderedEmail:
    plan = m.plan_name or "EduMatch"
    html = _page(
        "payment_failed.html.j2",
        title="Payment Failed",
        cta=("Update Payment Method", links.url("/pricing")),
        links=links,
        plan_name=plan,
        amount=format_amount(m.amount, m.currency),
        failure_reason=m.failure_reason or "The payment could not be processed",
    )
    return RenderedEmail(f"Payment Failed - {plan} Subscription", html)


def render_subscription_expiring(m: SubscriptionExpiringMetadata, links: Links) -> RenderedEmail:
    plan = m.plan_name or "EduMatch"
    html = _page(
        "subscription_expiring.html.j2",
        title="Subscription Expiring Soon",
        cta=("Renew Subscription", links.url("/pricing")),
        links=links,
        plan_name=plan,
        expiry=format_date(m.expiry_date),
        days=_days(m.days_remaining),
    )
    return RenderedEmail(f"Subscription Expiring Soon - {plan}", html)


def render_password_changed(m: PasswordChangedMetadata, links: Links) -> RenderedEmail:
    html = _page(
        "password_changed.html.j2",
        title="Password Changed",
        cta=("Reset Password", links.url("/forgot-password")),
        links=links,
        name=m.full_name or "there",
        change_time=format_date(m.change_time, fallback="recently"),
        ip_address=m.ip_address or "",
        user_agent=m.user_agent or "",
    )
    return RenderedEmail("Your EduMatch password was changed", html)


def render_user_banned(m: UserBannedMetadata, links: Links) -> RenderedEmail:
    html = _page(
        "user_banned.html.j2",
        title="Account Suspended",
        links=links,
        name=m.full_name or "there",
        reason=m.reason or "Violation of our terms of service",
        banned_until=format_date(m.banned_until, fallback=""),
    )
    return RenderedEmail("Account Suspended - EduMatch", html)


def render_session_revoked(m: SessionRevokedMetadata, links: Links) -> RenderedEmail:
    html = _page(
        "session_revoked.html.j2",
        title="Session Revoked",
        cta=("Sign In Again", links.url("/signin")),
        links=links,
        name=m.full_name or "there",
        reason=m.reason or "Security precaution",
        device_info=m.device_info or "",
    )
    return RenderedEmail("Security Alert - Session Revoked", html)


_POST_PATHS = {
    "scholarship": "/explore/scholarships/",
    "research-lab": "/explore/research-labs/",
}


def render_wishlist_deadline(m: WishlistDeadlineMetadata, links: Links) -> RenderedEmail:
    title = m.post_title or "An item in your wishlist"
    path = _POST_PATHS.get(m.post_type or "", "/explore/programmes/") + (m.post_id or "")
    html = _page(
        "wishlist_deadline.html.j2",
        title="Deadline Approaching",
        cta=("View Opportunity", links.url(path)),
        links=links,
        post_title=title,
        institution_name=m.institution_name or "",
        deadline=format_date(m.deadline_date),
        days=_days(m.days_remaining),
    )
    return RenderedEmail(f"Deadline Approaching - {title}", html)


DEFAULT_TEMPLATES: Mapping[NotificationType, TemplateFn] = MappingProxyType({
    NotificationType.WELCOME: render_welcome,
    NotificationType.PROFILE_CREATED: render_profile_created,
    NotificationType.PAYMENT_DEADLINE: render_payment_deadline,
    NotificationType.APPLICATION_STATUS_UPDATE: render_application_status,
    NotificationType.PAYMENT_SUCCESS: render_payment_success,
    NotificationType.PAYMENT_FAILED: render_payment_failed,
    NotificationType.SUBSCRIPTION_EXPIRING: render_subscription_expiring,
    NotificationType.PASSWORD_CHANGED: render_password_changed,
    NotificationType.USER_BANNED: render_user_banned,
    NotificationType.SESSION_REVOKED: render_session_revoked,
    NotificationType.WISHLIST_DEADLINE: render_wishlist_deadline,
})


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TemplateRegistry:
    """Immutable lookup from notification kind to render function."""

    def __init__(self, templates: Mapping[NotificationType, TemplateFn], links: Links):
        self._templates = MappingProxyType(dict(templates))
        self.links = links

    @classmethod
    def default(cls, app_base_url: str) -> "TemplateRegistry":
        return cls(DEFAULT_TEMPLATES, Links(app_base_url))

    def with_templates(self, overrides: Mapping[NotificationType, TemplateFn]) -> "TemplateRegistry":
        return TemplateRegistry({**self._templates, **overrides}, self.links)

    def __contains__(self, notification_type: object) -> bool:
        return notification_type in self._templates

    @property
    def types(self) -> frozenset[NotificationType]:
        return frozenset(self._templates)

    def resolve(self, notification_type: str) -> Callable[[NotificationMessage], RenderedEmail] | None:
        """
        Return a renderer for this kind, or None if no template is registered.
        The renderer raises TemplateRenderError and nothing else.
        """
        kind = NotificationType.parse(notification_type)
        fn = self._templates.get(kind) if kind is not None else None
        if fn is None:
            return None
        return functools.partial(self._render, fn)

    def _render(self, fn: TemplateFn, message: NotificationMessage) -> RenderedEmail:
        try:
            metadata: NotificationMetadata = message.typed_metadata()
            return fn(metadata, self.links)
        except Exception as e:
            raise TemplateRenderError(message.type, str(e)) from e
