"""Microsoft Teams incoming webhook sender."""

from typing import Any

from backupalert.models.notification import ChannelType, TeamsChannelConfig
from backupalert.notification.channels.base import HTTPChannelSender, severity_level
from backupalert.notification.messages import NotificationMessage

ADAPTIVE_CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"
ADAPTIVE_CARD_VERSION = "1.4"

TEAMS_COLORS = {
    "danger": "attention",
    "warning": "warning",
    "good": "good",
}


def build_teams_payload(message: NotificationMessage) -> dict[str, Any]:
    return {
        "type": "message",
        "attachments": [
            {
                "contentType": "application/vnd.microsoft.card.adaptive",
                "content": {
                    "$schema": ADAPTIVE_CARD_SCHEMA,
                    "type": "AdaptiveCard",
                    "version": ADAPTIVE_CARD_VERSION,
                    "body": [
                        {
                            "type": "TextBlock",
                            "text": message.title,
                            "size": "Medium",
                            "weight": "Bolder",
                            "color": TEAMS_COLORS[severity_level(message.severity)],
                        },
                        {
                            "type": "TextBlock",
                            "text": message.body,
                            "wrap": True,
                        },
                    ],
                },
            }
        ],
    }


class TeamsSender(HTTPChannelSender[TeamsChannelConfig]):
    """Posts an Adaptive Card to a Teams incoming webhook."""

    config_model = TeamsChannelConfig

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.TEAMS

    async def send(self, config: TeamsChannelConfig, message: NotificationMessage) -> None:
        config = self.check_config(config)
        await self.post(config.webhook_url, build_teams_payload(message))

    def recipient(self, config: TeamsChannelConfig) -> str:
        return config.webhook_url
