"""Pytest configuration and fixtures."""

import json
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
import pytest

from backupalert.core.config import Settings
from backupalert.core.errors import ChannelNotFoundError, RuleNotFoundError
from backupalert.models.notification import (
    ChannelType,
    EventType,
    NotificationChannel,
    NotificationLog,
    NotificationPreference,
)
from backupalert.models.rule import (
    NotificationRule,
    NotificationRuleEvent,
    NotificationRuleExecution,
    RuleTriggerType,
)
from backupalert.notification.channels.registry import ChannelRegistry
from backupalert.notification.transport import WebhookTransport

SLACK_URL = "https://hooks.slack.example/services/T000/B000/SECRETTOKEN"
WEBHOOK_URL = "https://receiver.example/hooks/backup?token=SECRETTOKEN"


class FakeNotificationStore:
    """In-memory notification store."""

    def __init__(self) -> None:
        self.channels: dict[uuid.UUID, NotificationChannel] = {}
        self.preferences: list[NotificationPreference] = []
        self.logs: dict[uuid.UUID, NotificationLog] = {}
        self.preference_error: Exception | None = None
        self.channel_errors: dict[uuid.UUID, Exception] = {}

    async def get_enabled_preferences(
        self, org_id: uuid.UUID, event_type: EventType
    ) -> list[NotificationPreference]:
        if self.preference_error is not None:
            raise self.preference_error
        return [
            p for p in self.preferences
            if p.org_id == org_id and p.event_type == event_type and p.enabled
        ]

    async def get_channel(self, channel_id: uuid.UUID) -> NotificationChannel:
        if channel_id in self.channel_errors:
            raise self.channel_errors[channel_id]
        if channel_id not in self.channels:
            raise ChannelNotFoundError(f"notification channel {channel_id} not found")
        return self.channels[channel_id]

    async def save_channel(self, channel: NotificationChannel) -> None:
        self.channels[channel.id] = channel

    async def save_preference(self, preference: NotificationPreference) -> None:
        self.preferences.append(preference)

    async def create_log(self, log: NotificationLog) -> None:
        self.logs[log.id] = log.model_copy()

    async def update_log(self, log: NotificationLog) -> None:
        self.logs[log.id] = log.model_copy()

    async def list_logs(self, org_id: uuid.UUID, limit: int = 100) -> list[NotificationLog]:
        rows = [log for log in self.logs.values() if log.org_id == org_id]
        rows.sort(key=lambda log: log.created_at, reverse=True)
        return rows[:limit]


class FakeRuleStore:
    """In-memory rule store."""

    def __init__(self) -> None:
        self.rules: list[NotificationRule] = []
        self.events: list[NotificationRuleEvent] = []
        self.executions: list[NotificationRuleExecution] = []
        self.suppressed: dict[uuid.UUID, datetime] = {}
        self.rules_error: Exception | None = None
        self.event_errors: dict[uuid.UUID, Exception] = {}

    async def get_enabled_rules(
        self, org_id: uuid.UUID, trigger_type: RuleTriggerType
    ) -> list[NotificationRule]:
        if self.rules_error is not None:
            raise self.rules_error
        return [
            r for r in self.rules
            if r.org_id == org_id and r.trigger_type == trigger_type and r.enabled
        ]

    async def get_rule(self, rule_id: uuid.UUID) -> NotificationRule:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        raise RuleNotFoundError(f"notification rule {rule_id} not found")

    async def save_rule(self, rule: NotificationRule) -> None:
        self.rules.append(rule)

    async def create_rule_event(self, event: NotificationRuleEvent) -> None:
        if event.rule_id in self.event_errors:
            raise self.event_errors[event.rule_id]
        self.events.append(event)

    async def count_rule_events(
        self, rule_id: uuid.UUID, resource_id: uuid.UUID | None, since: datetime
    ) -> int:
        return sum(
            1 for e in self.events
            if e.rule_id == rule_id and e.resource_id == resource_id and e.occurred_at >= since
        )

    async def list_rule_events(self, rule_id: uuid.UUID, limit: int = 100) -> list[NotificationRuleEvent]:
        return [e for e in reversed(self.events) if e.rule_id == rule_id][:limit]

    async def create_rule_execution(self, execution: NotificationRuleExecution) -> None:
        self.executions.append(execution)

    async def list_rule_executions(
        self, rule_id: uuid.UUID, limit: int = 100
    ) -> list[NotificationRuleExecution]:
        return [e for e in reversed(self.executions) if e.rule_id == rule_id][:limit]

    async def set_suppressed_until(self, rule_id: uuid.UUID, until: datetime) -> None:
        self.suppressed[rule_id] = until

    async def get_suppressed_until(self, rule_id: uuid.UUID) -> datetime | None:
        return self.suppressed.get(rule_id)


class HTTPRecorder:
    """Records requests sent through an httpx.MockTransport.

    Responses are taken from ``statuses`` in order; the last one repeats.
    """

    def __init__(self, statuses: list[int] | None = None) -> None:
        self.statuses = statuses or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.statuses) - 1)
        return httpx.Response(self.statuses[index])

    def json(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


class SleepRecorder:
    """Backoff sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


async def allow_all(url: str, require_https: bool = False) -> None:
    return None


def make_settings(**overrides: Any) -> Settings:
    return Settings(_env_file=None, **overrides)


def make_channel(
    org_id: uuid.UUID,
    channel_type: ChannelType,
    config: dict[str, Any],
    enabled: bool = True,
    name: str = "",
) -> NotificationChannel:
    return NotificationChannel(
        org_id=org_id,
        name=name or channel_type.value,
        type=channel_type,
        config_encrypted=json.dumps(config).encode(),
        enabled=enabled,
    )


def make_transport(
    recorder: Callable[[httpx.Request], httpx.Response],
    settings: Settings | None = None,
    sleep: SleepRecorder | None = None,
) -> WebhookTransport:
    return WebhookTransport(
        settings or make_settings(),
        client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
        validator=allow_all,
        sleep=sleep or SleepRecorder(),
    )


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def recorder() -> HTTPRecorder:
    return HTTPRecorder()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def transport(recorder: HTTPRecorder, settings: Settings, sleeper: SleepRecorder) -> WebhookTransport:
    return make_transport(recorder, settings, sleeper)


@pytest.fixture
def registry(transport: WebhookTransport, settings: Settings) -> ChannelRegistry:
    return ChannelRegistry(transport=transport, settings=settings)


@pytest.fixture
def notification_store() -> FakeNotificationStore:
    return FakeNotificationStore()


@pytest.fixture
def rule_store() -> FakeRuleStore:
    return FakeRuleStore()
