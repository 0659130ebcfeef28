"""
Processor Configuration
=======================
Every knob is an environment variable set by the CDK ProcessingStack. The
settings are read once per Lambda cold start (not at import) so tests can
monkeypatch the environment before a processor is built.

The delivery endpoints are explicit configuration. There is no guessing
about which environment we are in: if EMAIL_PRIMARY_ENDPOINT is unset the
Email Processor goes straight to the fallback endpoint.
"""
from __future__ import annotations

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError

# Queue policy shared by both primary queues (mirrored in MessagingStack)
VISIBILITY_TIMEOUT_SECONDS = 300
RETENTION_PERIOD_SECONDS = 14 * 24 * 60 * 60
MAX_RECEIVE_COUNT = 3
DEDUP_WINDOW_SECONDS = 300
BATCH_SIZE = 10


class _EnvSettings(BaseSettings):
    # Field `emails_queue_url` reads EMAILS_QUEUE_URL; an empty variable counts as unset
    model_config = SettingsConfigDict(env_ignore_empty=True, frozen=True, extra="ignore")

    @classmethod
    def from_env(cls):
        try:
            return cls()
        except ValidationError as e:
            names = ", ".join(str(err["loc"][0]).upper() for err in e.errors() if err["loc"])
            raise ConfigurationError(f"Invalid or missing configuration: {names}") from e


class NotificationProcessorSettings(_EnvSettings):
    emails_queue_url: str
    notification_store_endpoint: str | None = None
    app_base_url: str = "https://edumatch.app"


class EmailProcessorSettings(_EnvSettings):
    email_fallback_endpoint: str
    email_primary_endpoint: str | None = None
    email_primary_timeout_seconds: float = Field(default=2.0, gt=0)
    email_from: str = "noreply@edumatch.com"
    email_api_token: str | None = None
    app_base_url: str = "https://edumatch.app"


class ProducerSettings(_EnvSettings):
    notifications_queue_url: str
