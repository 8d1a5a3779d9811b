"""PagerDuty Events API v2 sender."""

from typing import Any

from backupalert.core.config import Settings, get_settings
from backupalert.models.notification import ChannelType, PagerDutyChannelConfig
from backupalert.notification.channels.base import HTTPChannelSender
from backupalert.notification.messages import NotificationMessage
from backupalert.notification.transport import WebhookTransport

PAGERDUTY_SEVERITIES = frozenset({"critical", "error", "warning", "info"})


def map_severity(severity: str) -> str:
    """Map a message severity onto the four values the Events API accepts."""
    value = (severity or "").lower()
    return value if value in PAGERDUTY_SEVERITIES else "info"


def build_pagerduty_event(config: PagerDutyChannelConfig, message: NotificationMessage) -> dict[str, Any]:
    return {
        "routing_key": config.routing_key,
        "event_action": "trigger",
        "payload": {
            "summary": message.title,
            "source": message.source,
            "severity": map_severity(message.severity or config.severity),
            "group": message.group,
        },
    }


class PagerDutySender(HTTPChannelSender[PagerDutyChannelConfig]):
    """Enqueues trigger events with the PagerDuty Events API."""

    config_model = PagerDutyChannelConfig
    success_statuses = frozenset({202})

    def __init__(self, transport: WebhookTransport, settings: Settings | None = None):
        super().__init__(transport)
        self._events_url = (settings or get_settings()).pagerduty_events_url

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.PAGERDUTY

    async def send(self, config: PagerDutyChannelConfig, message: NotificationMessage) -> None:
        config = self.check_config(config)
        await self.post(self._events_url, build_pagerduty_event(config, message))

    def recipient(self, config: PagerDutyChannelConfig) -> str:
        key = config.routing_key
        if len(key) > 8:
            return f"pagerduty:{key[:8]}..."
        return "pagerduty"
