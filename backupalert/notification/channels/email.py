"""SMTP email sender."""

import html
from email.mime.text import MIMEText

import aiosmtplib

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import DeliveryError, OutboundDisabledError
from backupalert.core.logging import get_logger
from backupalert.models.notification import ChannelType, EmailChannelConfig
from backupalert.notification.channels.base import ChannelSender, severity_level
from backupalert.notification.messages import NotificationMessage
from backupalert.notification.transport import WebhookTransport

logger = get_logger(__name__, component="email")

HEADER_COLORS = {
    "danger": "#dc2626",
    "warning": "#f59e0b",
    "good": "#22c55e",
}


def render_html(message: NotificationMessage) -> str:
    """Render a message as a minimal HTML document."""
    color = HEADER_COLORS[severity_level(message.severity)]
    body = "<br>".join(html.escape(line) for line in message.body.splitlines())
    return (
        "<html><body>"
        f'<h2 style="color: {color}">{html.escape(message.title)}</h2>'
        f"<p>{body}</p>"
        "</body></html>"
    )


def build_email(config: EmailChannelConfig, message: NotificationMessage) -> MIMEText:
    email = MIMEText(render_html(message), "html", "utf-8")
    email["From"] = config.from_address
    email["To"] = ", ".join(config.recipients)
    email["Subject"] = message.title
    return email


class EmailSender(ChannelSender[EmailChannelConfig]):
    """Sends one HTML email per message over SMTP.

    SMTP has no retry envelope here, so each message is sent once. Air-gap
    mode is read from the shared transport so both paths switch together.
    """

    config_model = EmailChannelConfig

    def __init__(self, transport: WebhookTransport, settings: Settings | None = None):
        self._transport = transport
        self._settings = settings or get_settings()

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.EMAIL

    async def send(self, config: EmailChannelConfig, message: NotificationMessage) -> None:
        config = self.check_config(config)
        if self._transport.air_gap_mode:
            raise OutboundDisabledError()

        try:
            await aiosmtplib.send(
                build_email(config, message),
                recipients=config.recipients,
                hostname=config.host,
                port=config.port,
                username=config.username or None,
                password=config.password or None,
                use_tls=config.tls,
                timeout=self._settings.http_timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("Email send failed", host=config.host, error=type(e).__name__)
            raise DeliveryError(f"smtp delivery failed: {e}") from e

        logger.info("Email sent", host=config.host, recipients=len(config.recipients))

    def recipient(self, config: EmailChannelConfig) -> str:
        return ", ".join(config.recipients)
