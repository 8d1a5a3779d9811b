"""Discord webhook sender."""

from typing import Any

from backupalert.models.notification import ChannelType, DiscordChannelConfig
from backupalert.notification.channels.base import HTTPChannelSender, severity_level
from backupalert.notification.messages import NotificationMessage

DISCORD_COLORS = {
    "danger": 0xDC2626,
    "warning": 0xF59E0B,
    "good": 0x22C55E,
}


def build_discord_payload(message: NotificationMessage) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": message.title,
                "description": message.body,
                "color": DISCORD_COLORS[severity_level(message.severity)],
            }
        ]
    }


class DiscordSender(HTTPChannelSender[DiscordChannelConfig]):
    """Posts an embed to a Discord webhook."""

    config_model = DiscordChannelConfig
    # Discord answers 204 unless the webhook is called with ?wait=true
    success_statuses = frozenset({200, 204})

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.DISCORD

    async def send(self, config: DiscordChannelConfig, message: NotificationMessage) -> None:
        config = self.check_config(config)
        await self.post(config.webhook_url, build_discord_payload(message))

    def recipient(self, config: DiscordChannelConfig) -> str:
        return config.webhook_url
