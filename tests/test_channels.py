"""Tests for provider payload shaping and channel senders."""

import uuid

import aiosmtplib
import pytest

from backupalert.core.errors import ConfigurationError, DeliveryError, OutboundDisabledError
from backupalert.models.notification import (
    ChannelType,
    DiscordChannelConfig,
    EmailChannelConfig,
    PagerDutyChannelConfig,
    SlackChannelConfig,
    TeamsChannelConfig,
    WebhookChannelConfig,
)
from backupalert.notification.channels.base import severity_level
from backupalert.notification.channels.discord import DiscordSender
from backupalert.notification.channels.email import EmailSender, build_email
from backupalert.notification.channels.pagerduty import PagerDutySender, map_severity
from backupalert.notification.channels.slack import SlackSender, build_slack_payload
from backupalert.notification.channels.teams import TeamsSender, build_teams_payload
from backupalert.notification.channels.webhook import WebhookSender
from backupalert.notification.messages import NotificationMessage
from backupalert.notification.transport import compute_signature
from backupalert.storage.base import PassthroughDecryptor
from conftest import SLACK_URL, WEBHOOK_URL, HTTPRecorder, make_channel, make_settings, make_transport


@pytest.fixture
def message() -> NotificationMessage:
    return NotificationMessage(
        title="Backup Failed: server1 - nightly",
        body="Host: server1\nError: disk full",
        event_type="backup_failed",
        severity="error",
        source="server1",
        group="backup",
        data={"hostname": "server1"},
    )


@pytest.mark.parametrize(
    "severity,expected",
    [
        ("critical", "danger"),
        ("ERROR", "danger"),
        ("warning", "warning"),
        ("info", "good"),
        ("", "good"),
    ],
)
def test_severity_level(severity: str, expected: str) -> None:
    assert severity_level(severity) == expected


def test_slack_payload_uses_danger_color(message: NotificationMessage) -> None:
    attachment = build_slack_payload(message)["attachments"][0]
    assert attachment["color"] == "#dc2626"
    assert attachment["blocks"][0]["text"]["text"] == message.title
    assert "disk full" in attachment["blocks"][1]["text"]["text"]


@pytest.mark.asyncio
async def test_slack_sender_posts_to_webhook(transport, recorder: HTTPRecorder, message) -> None:
    sender = SlackSender(transport)
    config = SlackChannelConfig(webhook_url=SLACK_URL)

    await sender.send(config, message)

    assert str(recorder.requests[0].url) == SLACK_URL
    assert recorder.json()["attachments"][0]["color"] == "#dc2626"
    assert sender.recipient(config) == "slack-webhook"


def test_slack_recipient_is_channel_name(transport) -> None:
    config = SlackChannelConfig(webhook_url=SLACK_URL, channel="#backups")
    assert SlackSender(transport).recipient(config) == "#backups"


@pytest.mark.asyncio
async def test_slack_rejects_non_200() -> None:
    sender = SlackSender(make_transport(HTTPRecorder([204])))
    with pytest.raises(DeliveryError):
        await sender.send(SlackChannelConfig(webhook_url=SLACK_URL), NotificationMessage(title="t"))


def test_teams_payload_is_adaptive_card(message: NotificationMessage) -> None:
    payload = build_teams_payload(message)
    card = payload["attachments"][0]
    assert card["contentType"] == "application/vnd.microsoft.card.adaptive"
    content = card["content"]
    assert content["type"] == "AdaptiveCard"
    assert content["version"] == "1.4"
    assert content["$schema"].startswith("http://adaptivecards.io/")
    assert content["body"][0]["color"] == "attention"


@pytest.mark.asyncio
async def test_teams_sender(transport, recorder: HTTPRecorder, message) -> None:
    await TeamsSender(transport).send(TeamsChannelConfig(webhook_url="https://teams.example/hook"), message)
    assert recorder.json()["type"] == "message"


@pytest.mark.asyncio
async def test_discord_accepts_204(message) -> None:
    recorder = HTTPRecorder([204])
    sender = DiscordSender(make_transport(recorder))

    await sender.send(DiscordChannelConfig(webhook_url="https://discord.example/api/webhooks/1/x"), message)

    embed = recorder.json()["embeds"][0]
    assert embed["title"] == message.title
    assert embed["color"] == 0xDC2626
    assert len(recorder.requests) == 1


@pytest.mark.parametrize(
    "severity,expected",
    [("critical", "critical"), ("error", "error"), ("WARNING", "warning"), ("info", "info"), ("urgent", "info")],
)
def test_pagerduty_severity_mapping(severity: str, expected: str) -> None:
    assert map_severity(severity) == expected


@pytest.mark.asyncio
async def test_pagerduty_enqueues_trigger_event(message) -> None:
    recorder = HTTPRecorder([202])
    settings = make_settings()
    sender = PagerDutySender(make_transport(recorder, settings), settings)
    config = PagerDutyChannelConfig(routing_key="R0UT1NGKEY1234567890")

    await sender.send(config, message)

    request = recorder.requests[0]
    assert str(request.url) == settings.pagerduty_events_url
    body = recorder.json()
    assert body["routing_key"] == "R0UT1NGKEY1234567890"
    assert body["event_action"] == "trigger"
    assert body["payload"] == {
        "summary": message.title,
        "source": "server1",
        "severity": "error",
        "group": "backup",
    }
    assert sender.recipient(config) == "pagerduty:R0UT1NGK..."


def test_pagerduty_short_routing_key_is_not_recorded(transport, settings) -> None:
    sender = PagerDutySender(transport, settings)
    assert sender.recipient(PagerDutyChannelConfig(routing_key="R0ut1ng")) == "pagerduty"
    assert sender.recipient(PagerDutyChannelConfig(routing_key="12345678")) == "pagerduty"
    assert sender.recipient(PagerDutyChannelConfig(routing_key="123456789")) == "pagerduty:12345678..."


@pytest.mark.asyncio
async def test_pagerduty_requires_202(message) -> None:
    recorder = HTTPRecorder([200])
    sender = PagerDutySender(make_transport(recorder), make_settings())
    with pytest.raises(DeliveryError):
        await sender.send(PagerDutyChannelConfig(routing_key="key"), message)


@pytest.mark.asyncio
async def test_webhook_sender_signs_and_adds_headers(transport, recorder: HTTPRecorder, settings, message) -> None:
    config = WebhookChannelConfig(url=WEBHOOK_URL, secret="s3cret", headers={"X-Tenant": "acme"})

    await WebhookSender(transport).send(config, message)

    request = recorder.requests[0]
    assert request.headers["X-Tenant"] == "acme"
    assert request.headers[settings.webhook_signature_header] == compute_signature(request.content, "s3cret")
    body = recorder.json()
    assert body["event_type"] == "backup_failed"
    assert body["data"]["hostname"] == "server1"
    assert body["data"]["title"] == message.title
    assert body["data"]["severity"] == "error"


@pytest.mark.asyncio
async def test_sender_rejects_config_of_another_type(transport, message) -> None:
    with pytest.raises(ConfigurationError):
        await SlackSender(transport).send(TeamsChannelConfig(webhook_url="https://teams.example/x"), message)


@pytest.fixture
def email_config() -> EmailChannelConfig:
    return EmailChannelConfig.model_validate(
        {"host": "smtp.example", "port": 587, "from": "alerts@example.com", "to": ["ops@example.com"]}
    )


def test_build_email_headers(email_config: EmailChannelConfig, message) -> None:
    email = build_email(email_config, message)
    assert email["From"] == "alerts@example.com"
    assert email["To"] == "ops@example.com"
    assert email["Subject"] == message.title
    assert email.get_content_type() == "text/html"


@pytest.mark.asyncio
async def test_email_sender_uses_smtp(monkeypatch, transport, email_config, message) -> None:
    calls = []

    async def fake_send(email, **kwargs):
        calls.append((email, kwargs))
        return ({}, "OK")

    monkeypatch.setattr("backupalert.notification.channels.email.aiosmtplib.send", fake_send)
    sender = EmailSender(transport, make_settings())

    await sender.send(email_config, message)

    assert len(calls) == 1
    _, kwargs = calls[0]
    assert kwargs["hostname"] == "smtp.example"
    assert kwargs["port"] == 587
    assert kwargs["recipients"] == ["ops@example.com"]
    assert kwargs["username"] is None
    assert sender.recipient(email_config) == "ops@example.com"


@pytest.mark.asyncio
async def test_email_smtp_error_becomes_delivery_error(monkeypatch, transport, email_config, message) -> None:
    async def failing_send(email, **kwargs):
        raise aiosmtplib.SMTPConnectError("connection refused")

    monkeypatch.setattr("backupalert.notification.channels.email.aiosmtplib.send", failing_send)

    with pytest.raises(DeliveryError, match="smtp delivery failed"):
        await EmailSender(transport, make_settings()).send(email_config, message)


@pytest.mark.asyncio
async def test_email_respects_air_gap(monkeypatch, transport, email_config, message) -> None:
    calls = []

    async def fake_send(email, **kwargs):
        calls.append(email)

    monkeypatch.setattr("backupalert.notification.channels.email.aiosmtplib.send", fake_send)
    transport.set_air_gap_mode(True)

    with pytest.raises(OutboundDisabledError):
        await EmailSender(transport, make_settings()).send(email_config, message)
    assert calls == []


def test_registry_has_sender_for_every_type(registry) -> None:
    for channel_type in ChannelType:
        assert registry.get(channel_type).channel_type == channel_type


def test_registry_rejects_unknown_type(registry) -> None:
    with pytest.raises(ConfigurationError, match="unsupported channel type"):
        registry.get("carrier_pigeon")


def test_registry_load_parses_config(registry) -> None:
    channel = make_channel(uuid.uuid4(), ChannelType.SLACK, {"webhook_url": SLACK_URL})

    sender, config = registry.load(channel, PassthroughDecryptor())

    assert isinstance(sender, SlackSender)
    assert config == SlackChannelConfig(webhook_url=SLACK_URL)


def test_registry_load_wraps_decrypt_failure(registry) -> None:
    class BrokenDecryptor:
        def decrypt(self, blob: bytes) -> bytes:
            raise RuntimeError("bad key")

    channel = make_channel(uuid.uuid4(), ChannelType.SLACK, {"webhook_url": SLACK_URL})
    with pytest.raises(ConfigurationError, match="failed to decrypt"):
        registry.load(channel, BrokenDecryptor())


def test_registry_load_rejects_config_of_another_type(registry) -> None:
    channel = make_channel(uuid.uuid4(), ChannelType.PAGERDUTY, {"webhook_url": SLACK_URL})
    with pytest.raises(ConfigurationError, match="invalid pagerduty config"):
        registry.load(channel, PassthroughDecryptor())


def test_registry_load_rejects_malformed_json(registry) -> None:
    channel = make_channel(uuid.uuid4(), ChannelType.WEBHOOK, {})
    channel.config_encrypted = b"{not json"
    with pytest.raises(ConfigurationError):
        registry.load(channel, PassthroughDecryptor())
