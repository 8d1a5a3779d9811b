"""Generic signed JSON webhook sender."""

from backupalert.models.notification import ChannelType, WebhookChannelConfig
from backupalert.notification.channels.base import HTTPChannelSender
from backupalert.notification.messages import NotificationMessage
from backupalert.notification.transport import WebhookPayload


def build_webhook_payload(message: NotificationMessage) -> WebhookPayload:
    data = dict(message.data)
    data.setdefault("title", message.title)
    data.setdefault("severity", message.severity)
    if message.body:
        data.setdefault("message", message.body)
    return WebhookPayload(event_type=message.event_type, data=data)


class WebhookSender(HTTPChannelSender[WebhookChannelConfig]):
    """Posts ``{event_type, timestamp, data}`` signed with the channel secret."""

    config_model = WebhookChannelConfig

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.WEBHOOK

    async def send(self, config: WebhookChannelConfig, message: NotificationMessage) -> None:
        config = self.check_config(config)
        await self.post(
            config.url,
            build_webhook_payload(message),
            secret=config.secret,
            headers=config.headers,
        )

    def recipient(self, config: WebhookChannelConfig) -> str:
        return config.url
