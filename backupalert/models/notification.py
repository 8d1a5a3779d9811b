"""Notification channel, preference and delivery log domain models."""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from backupalert.core.errors import ConfigurationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChannelType(str, Enum):
    """Notification channel type."""

    EMAIL = "email"
    SLACK = "slack"
    TEAMS = "teams"
    DISCORD = "discord"
    PAGERDUTY = "pagerduty"
    WEBHOOK = "webhook"


class EventType(str, Enum):
    """Domain event types that preferences subscribe to."""

    BACKUP_SUCCESS = "backup_success"
    BACKUP_FAILED = "backup_failed"
    AGENT_OFFLINE = "agent_offline"
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"
    VALIDATION_FAILED = "validation_failed"
    TEST_RESTORE_FAILED = "test_restore_failed"


class LogStatus(str, Enum):
    """Delivery status of a notification log row."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ChannelConfig(BaseModel):
    """Base for decrypted, type-specific channel configuration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class EmailChannelConfig(ChannelConfig):
    """SMTP destination."""

    host: str = Field(..., min_length=1, description="SMTP server host")
    port: int = Field(..., gt=0, le=65535, description="SMTP server port")
    username: str = Field(default="", description="SMTP username")
    password: str = Field(default="", description="SMTP password")
    from_address: str = Field(..., alias="from", min_length=1, description="Sender address")
    to: list[str] = Field(default_factory=list, description="Recipients, defaults to the sender")
    tls: bool = Field(default=False, description="Wrap the connection in TLS")

    @property
    def recipients(self) -> list[str]:
        return self.to or [self.from_address]


class SlackChannelConfig(ChannelConfig):
    """Slack incoming webhook."""

    webhook_url: str = Field(..., min_length=1)
    channel: str = Field(default="", description="Channel name recorded as the delivery recipient")


class TeamsChannelConfig(ChannelConfig):
    """Microsoft Teams incoming webhook."""

    webhook_url: str = Field(..., min_length=1)


class DiscordChannelConfig(ChannelConfig):
    """Discord webhook."""

    webhook_url: str = Field(..., min_length=1)


class PagerDutyChannelConfig(ChannelConfig):
    """PagerDuty Events API v2 integration."""

    routing_key: str = Field(..., min_length=1)
    severity: str = Field(default="warning", description="Default severity")


class WebhookChannelConfig(ChannelConfig):
    """Generic signed JSON webhook."""

    url: str = Field(..., min_length=1)
    secret: str = Field(default="", description="HMAC-SHA256 signing secret")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")


CHANNEL_CONFIG_MODELS: dict[ChannelType, type[ChannelConfig]] = {
    ChannelType.EMAIL: EmailChannelConfig,
    ChannelType.SLACK: SlackChannelConfig,
    ChannelType.TEAMS: TeamsChannelConfig,
    ChannelType.DISCORD: DiscordChannelConfig,
    ChannelType.PAGERDUTY: PagerDutyChannelConfig,
    ChannelType.WEBHOOK: WebhookChannelConfig,
}


def parse_channel_config(channel_type: ChannelType, raw: bytes | str) -> ChannelConfig:
    """Decode a decrypted configuration blob into its type-specific model.

    The channel type alone selects the schema. A blob written for another
    type fails validation instead of being coerced.

    Raises:
        ConfigurationError: If the blob is not JSON or misses required fields
    """
    try:
        channel_type = ChannelType(channel_type)
    except ValueError as e:
        raise ConfigurationError(f"unsupported channel type: {channel_type}") from e
    model = CHANNEL_CONFIG_MODELS[channel_type]

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"failed to parse {channel_type.value} config: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"failed to parse {channel_type.value} config: expected an object")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigurationError(f"invalid {channel_type.value} config: {fields}") from e


class NotificationChannel(BaseModel):
    """Tenant-scoped notification destination."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    name: str = Field(default="", description="Display name")
    type: ChannelType
    config_encrypted: bytes = Field(..., description="Opaque encrypted configuration blob")
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationPreference(BaseModel):
    """Opt-in linking one event type to one channel for an organization."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    channel_id: uuid.UUID
    event_type: EventType
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class NotificationLog(BaseModel):
    """One attempted delivery of one event to one channel."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    channel_id: uuid.UUID | None = None
    event_type: str
    recipient: str = ""
    subject: str = ""
    status: LogStatus = LogStatus.PENDING
    error_message: str = ""
    sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def finalized(self) -> bool:
        return self.status != LogStatus.PENDING

    def mark_sent(self) -> None:
        """Finalize as delivered."""
        self._ensure_pending()
        self.status = LogStatus.SENT
        self.sent_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        """Finalize as failed with the delivery error."""
        self._ensure_pending()
        self.status = LogStatus.FAILED
        self.error_message = error_message

    def _ensure_pending(self) -> None:
        if self.finalized:
            raise ValueError(f"notification log {self.id} already finalized as {self.status.value}")
