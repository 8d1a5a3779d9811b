"""Base classes for channel senders."""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from backupalert.core.errors import ConfigurationError
from backupalert.models.notification import ChannelConfig, ChannelType
from backupalert.notification.messages import NotificationMessage
from backupalert.notification.transport import WebhookTransport

ConfigT = TypeVar("ConfigT", bound=ChannelConfig)

SEVERITY_CRITICAL = "critical"
SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"


def severity_level(severity: str) -> str:
    """Collapse a free-form severity into danger, warning or good."""
    value = (severity or "").lower()
    if value in (SEVERITY_CRITICAL, SEVERITY_ERROR):
        return "danger"
    if value == SEVERITY_WARNING:
        return "warning"
    return "good"


class ChannelSender(ABC, Generic[ConfigT]):
    """Shapes a generic message into one provider's wire format and sends it.

    Senders never retry on their own and never redact recipients.
    """

    config_model: type[ConfigT]

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """Return channel type identifier."""

    @abstractmethod
    async def send(self, config: ConfigT, message: NotificationMessage) -> None:
        """Send a message to the configured destination.

        Args:
            config: Decoded channel configuration
            message: Message to deliver

        Raises:
            NotificationError: Destination rejected or unreachable
        """

    @abstractmethod
    def recipient(self, config: ConfigT) -> str:
        """Describe the destination for the delivery log."""

    def check_config(self, config: ChannelConfig) -> ConfigT:
        if not isinstance(config, self.config_model):
            raise ConfigurationError(
                f"{self.channel_type.value} sender cannot use {type(config).__name__}"
            )
        return config

    async def close(self) -> None:
        """Clean up resources. Override if needed."""


class HTTPChannelSender(ChannelSender[ConfigT]):
    """Sender whose deliveries go through the signed retrying transport."""

    success_statuses: frozenset[int] | None = None

    def __init__(self, transport: WebhookTransport):
        self._transport = transport

    async def post(self, url: str, payload: Any, secret: str = "", headers: dict[str, str] | None = None) -> None:
        await self._transport.send(
            url,
            payload,
            secret=secret,
            success_statuses=self.success_statuses,
            headers=headers,
        )
