"""Slack incoming webhook sender."""

from typing import Any

from backupalert.models.notification import ChannelType, SlackChannelConfig
from backupalert.notification.channels.base import HTTPChannelSender, severity_level
from backupalert.notification.messages import NotificationMessage

SLACK_COLORS = {
    "danger": "#dc2626",
    "warning": "#f59e0b",
    "good": "#22c55e",
}


def build_slack_payload(message: NotificationMessage) -> dict[str, Any]:
    return {
        "attachments": [
            {
                "color": SLACK_COLORS[severity_level(message.severity)],
                "blocks": [
                    {
                        "type": "header",
                        "text": {"type": "plain_text", "text": message.title, "emoji": True},
                    },
                    {
                        "type": "section",
                        "text": {"type": "mrkdwn", "text": message.body},
                    },
                ],
            }
        ]
    }


class SlackSender(HTTPChannelSender[SlackChannelConfig]):
    """Posts attachment blocks to a Slack incoming webhook."""

    config_model = SlackChannelConfig
    success_statuses = frozenset({200})

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.SLACK

    async def send(self, config: SlackChannelConfig, message: NotificationMessage) -> None:
        config = self.check_config(config)
        await self.post(config.webhook_url, build_slack_payload(message))

    def recipient(self, config: SlackChannelConfig) -> str:
        return config.channel or "slack-webhook"
