"""Channel type to sender lookup."""

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import ConfigurationError
from backupalert.models.notification import (
    ChannelConfig,
    ChannelType,
    NotificationChannel,
    parse_channel_config,
)
from backupalert.notification.channels.base import ChannelSender
from backupalert.notification.channels.discord import DiscordSender
from backupalert.notification.channels.email import EmailSender
from backupalert.notification.channels.pagerduty import PagerDutySender
from backupalert.notification.channels.slack import SlackSender
from backupalert.notification.channels.teams import TeamsSender
from backupalert.notification.channels.webhook import WebhookSender
from backupalert.notification.transport import WebhookTransport
from backupalert.storage.base import Decryptor


class ChannelRegistry:
    """Holds one sender per channel type, all sharing one transport."""

    def __init__(
        self,
        transport: WebhookTransport | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self.transport = transport or WebhookTransport(self._settings)
        self._senders: dict[ChannelType, ChannelSender] = {}

        for sender in (
            SlackSender(self.transport),
            TeamsSender(self.transport),
            DiscordSender(self.transport),
            PagerDutySender(self.transport, self._settings),
            WebhookSender(self.transport),
            EmailSender(self.transport, self._settings),
        ):
            self.register(sender)

    def register(self, sender: ChannelSender) -> None:
        """Register or replace the sender for its channel type."""
        self._senders[sender.channel_type] = sender

    def get(self, channel_type: ChannelType | str) -> ChannelSender:
        """Return the sender for a channel type.

        Raises:
            ConfigurationError: If no sender handles the type
        """
        try:
            return self._senders[ChannelType(channel_type)]
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"unsupported channel type: {channel_type}") from e

    def load(
        self, channel: NotificationChannel, decryptor: Decryptor
    ) -> tuple[ChannelSender, ChannelConfig]:
        """Decrypt a channel's configuration and pair it with its sender.

        Raises:
            ConfigurationError: Unsupported type, undecryptable or malformed config
        """
        sender = self.get(channel.type)
        try:
            raw = decryptor.decrypt(channel.config_encrypted)
        except Exception as e:
            raise ConfigurationError(f"failed to decrypt {channel.type.value} config: {type(e).__name__}") from e
        return sender, parse_channel_config(channel.type, raw)

    async def close(self) -> None:
        for sender in self._senders.values():
            await sender.close()
        await self.transport.close()
