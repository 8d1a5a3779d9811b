"""Tests for the Redis-backed stores."""

import uuid
from datetime import timedelta

import fakeredis
import pytest
import pytest_asyncio

from backupalert.core.errors import ChannelNotFoundError, RuleNotFoundError
from backupalert.models.notification import (
    ChannelType,
    EventType,
    NotificationLog,
    NotificationPreference,
    utcnow,
)
from backupalert.models.rule import (
    NotificationRule,
    NotificationRuleEvent,
    NotificationRuleExecution,
    NotifyChannelAction,
    RuleTriggerType,
)
from backupalert.storage.redis_client import RedisKeys
from backupalert.storage.redis_store import RedisNotificationStore, RedisRuleStore
from conftest import SLACK_URL, make_channel, make_settings


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def notification_store(redis) -> RedisNotificationStore:
    return RedisNotificationStore(redis)


@pytest.fixture
def rule_store(redis) -> RedisRuleStore:
    return RedisRuleStore(redis, make_settings())


@pytest.mark.asyncio
async def test_channel_round_trip_keeps_binary_config(notification_store, org_id) -> None:
    channel = make_channel(org_id, ChannelType.SLACK, {"webhook_url": SLACK_URL})
    channel.config_encrypted = b"\x00\xff" + channel.config_encrypted

    await notification_store.save_channel(channel)
    loaded = await notification_store.get_channel(channel.id)

    assert loaded == channel


@pytest.mark.asyncio
async def test_missing_channel(notification_store) -> None:
    with pytest.raises(ChannelNotFoundError):
        await notification_store.get_channel(uuid.uuid4())


@pytest.mark.asyncio
async def test_enabled_preferences_filter_and_order(notification_store, org_id) -> None:
    now = utcnow()
    first = NotificationPreference(
        org_id=org_id, channel_id=uuid.uuid4(), event_type=EventType.BACKUP_FAILED, created_at=now
    )
    second = NotificationPreference(
        org_id=org_id,
        channel_id=uuid.uuid4(),
        event_type=EventType.BACKUP_FAILED,
        created_at=now + timedelta(seconds=1),
    )
    disabled = NotificationPreference(
        org_id=org_id, channel_id=uuid.uuid4(), event_type=EventType.BACKUP_FAILED, enabled=False
    )
    other_event = NotificationPreference(org_id=org_id, channel_id=uuid.uuid4(), event_type=EventType.AGENT_OFFLINE)
    other_org = NotificationPreference(
        org_id=uuid.uuid4(), channel_id=uuid.uuid4(), event_type=EventType.BACKUP_FAILED
    )
    for preference in (second, disabled, other_event, other_org, first):
        await notification_store.save_preference(preference)

    preferences = await notification_store.get_enabled_preferences(org_id, EventType.BACKUP_FAILED)

    assert [p.id for p in preferences] == [first.id, second.id]


@pytest.mark.asyncio
async def test_preference_update_moves_index(notification_store, org_id) -> None:
    preference = NotificationPreference(org_id=org_id, channel_id=uuid.uuid4(), event_type=EventType.BACKUP_FAILED)
    await notification_store.save_preference(preference)

    preference.event_type = EventType.BACKUP_SUCCESS
    await notification_store.save_preference(preference)

    assert await notification_store.get_enabled_preferences(org_id, EventType.BACKUP_FAILED) == []
    moved = await notification_store.get_enabled_preferences(org_id, EventType.BACKUP_SUCCESS)
    assert [p.id for p in moved] == [preference.id]


@pytest.mark.asyncio
async def test_logs_newest_first_with_limit(notification_store, org_id) -> None:
    base = utcnow()
    logs = [
        NotificationLog(org_id=org_id, event_type="backup_failed", created_at=base + timedelta(seconds=i))
        for i in range(3)
    ]
    for log in logs:
        await notification_store.create_log(log)

    logs[0].mark_sent()
    await notification_store.update_log(logs[0])

    listed = await notification_store.list_logs(org_id, limit=2)
    assert [log.id for log in listed] == [logs[2].id, logs[1].id]

    everything = await notification_store.list_logs(org_id)
    assert everything[-1].status.value == "sent"
    assert await notification_store.list_logs(uuid.uuid4()) == []


@pytest.mark.asyncio
async def test_rules_in_definition_order(rule_store, org_id) -> None:
    channel_id = uuid.uuid4()
    rules = [
        NotificationRule(
            org_id=org_id,
            name=name,
            trigger_type=RuleTriggerType.BACKUP_FAILED,
            actions=[NotifyChannelAction(channel_id=channel_id)],
        )
        for name in ("one", "two", "three")
    ]
    for rule in rules:
        await rule_store.save_rule(rule)

    rules[1].enabled = False
    await rule_store.save_rule(rules[1])
    rules[0].description = "updated"
    await rule_store.save_rule(rules[0])

    loaded = await rule_store.get_enabled_rules(org_id, RuleTriggerType.BACKUP_FAILED)

    assert [r.name for r in loaded] == ["one", "three"]
    assert loaded[0].description == "updated"
    assert loaded[0].actions[0].channel_id == channel_id
    assert await rule_store.get_enabled_rules(org_id, RuleTriggerType.AGENT_OFFLINE) == []


@pytest.mark.asyncio
async def test_get_rule(rule_store, org_id) -> None:
    rule = NotificationRule(org_id=org_id, name="r", trigger_type=RuleTriggerType.BACKUP_FAILED)
    await rule_store.save_rule(rule)

    assert (await rule_store.get_rule(rule.id)).id == rule.id
    with pytest.raises(RuleNotFoundError):
        await rule_store.get_rule(uuid.uuid4())


@pytest.mark.asyncio
async def test_rule_event_counting_by_resource_and_window(rule_store, org_id) -> None:
    rule_id, resource = uuid.uuid4(), uuid.uuid4()
    now = utcnow()

    def event(resource_id, minutes_ago: int) -> NotificationRuleEvent:
        return NotificationRuleEvent(
            org_id=org_id,
            rule_id=rule_id,
            trigger_type=RuleTriggerType.BACKUP_FAILED,
            resource_id=resource_id,
            occurred_at=now - timedelta(minutes=minutes_ago),
        )

    for recorded in (event(resource, 5), event(resource, 30), event(resource, 90), event(uuid.uuid4(), 1)):
        await rule_store.create_rule_event(recorded)
    await rule_store.create_rule_event(event(None, 1))

    since = now - timedelta(minutes=60)
    assert await rule_store.count_rule_events(rule_id, resource, since) == 2
    assert await rule_store.count_rule_events(rule_id, None, since) == 1

    history = await rule_store.list_rule_events(rule_id, limit=10)
    assert len(history) == 5
    assert history[-1].occurred_at == now - timedelta(minutes=90)


@pytest.mark.asyncio
async def test_counting_trims_window_and_sets_expiry(rule_store, redis, org_id) -> None:
    rule_id, resource = uuid.uuid4(), uuid.uuid4()
    now = utcnow()
    for days_ago in range(1, 31):
        await rule_store.create_rule_event(
            NotificationRuleEvent(
                org_id=org_id,
                rule_id=rule_id,
                trigger_type=RuleTriggerType.BACKUP_FAILED,
                resource_id=resource,
                occurred_at=now - timedelta(days=days_ago),
            )
        )
    await rule_store.create_rule_event(
        NotificationRuleEvent(
            org_id=org_id,
            rule_id=rule_id,
            trigger_type=RuleTriggerType.BACKUP_FAILED,
            resource_id=resource,
            occurred_at=now,
        )
    )
    window_key = RedisKeys.rule_window(str(rule_id), str(resource))

    assert await rule_store.count_rule_events(rule_id, resource, now - timedelta(minutes=60)) == 1

    assert await redis.zcard(window_key) == 1
    assert 0 < await redis.ttl(window_key) <= 1440 * 60


@pytest.mark.asyncio
async def test_long_count_window_extends_expiry(rule_store, redis, org_id) -> None:
    rule_id = uuid.uuid4()
    now = utcnow()
    await rule_store.create_rule_event(
        NotificationRuleEvent(
            org_id=org_id,
            rule_id=rule_id,
            trigger_type=RuleTriggerType.BACKUP_FAILED,
            occurred_at=now - timedelta(days=2),
        )
    )

    assert await rule_store.count_rule_events(rule_id, None, now - timedelta(days=7)) == 1
    assert await redis.ttl(RedisKeys.rule_window(str(rule_id), "none")) > 6 * 86400


@pytest.mark.asyncio
async def test_rule_history_is_capped(redis, org_id) -> None:
    store = RedisRuleStore(redis, make_settings(rule_history_limit=3))
    rule_id = uuid.uuid4()
    base = utcnow()
    for minutes_ago in range(5, 0, -1):
        when = base - timedelta(minutes=minutes_ago)
        await store.create_rule_event(
            NotificationRuleEvent(
                org_id=org_id,
                rule_id=rule_id,
                trigger_type=RuleTriggerType.BACKUP_FAILED,
                occurred_at=when,
            )
        )
        await store.create_rule_execution(NotificationRuleExecution(org_id=org_id, rule_id=rule_id, executed_at=when))

    events = await store.list_rule_events(rule_id, limit=10)
    executions = await store.list_rule_executions(rule_id, limit=10)

    assert [e.occurred_at for e in events] == [base - timedelta(minutes=m) for m in (1, 2, 3)]
    assert len(executions) == 3
    assert await redis.zcard(RedisKeys.rule_events(str(rule_id))) == 3


@pytest.mark.asyncio
async def test_rule_executions_newest_first(rule_store, org_id) -> None:
    rule_id = uuid.uuid4()
    base = utcnow()
    older = NotificationRuleExecution(org_id=org_id, rule_id=rule_id, executed_at=base - timedelta(minutes=1))
    newer = NotificationRuleExecution(org_id=org_id, rule_id=rule_id, executed_at=base)
    newer.mark_failed("notification channel x not found")
    await rule_store.create_rule_execution(older)
    await rule_store.create_rule_execution(newer)

    executions = await rule_store.list_rule_executions(rule_id)

    assert [e.id for e in executions] == [newer.id, older.id]
    assert not executions[0].success


@pytest.mark.asyncio
async def test_suppression_deadline(rule_store, redis) -> None:
    rule_id = uuid.uuid4()
    until = utcnow() + timedelta(minutes=30)

    await rule_store.set_suppressed_until(rule_id, until)

    assert await rule_store.get_suppressed_until(rule_id) == until
    ttl = await redis.ttl(RedisKeys.rule_suppressed(str(rule_id)))
    assert 0 < ttl <= 1800

    await rule_store.set_suppressed_until(rule_id, utcnow() - timedelta(minutes=1))
    assert await rule_store.get_suppressed_until(rule_id) is None
