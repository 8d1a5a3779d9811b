"""Redis-backed notification and rule stores."""

import math
import uuid
from datetime import datetime

from redis.asyncio import Redis

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import ChannelNotFoundError, RuleNotFoundError
from backupalert.models.notification import (
    EventType,
    NotificationChannel,
    NotificationLog,
    NotificationPreference,
    utcnow,
)
from backupalert.models.rule import (
    NotificationRule,
    NotificationRuleEvent,
    NotificationRuleExecution,
    RuleTriggerType,
)
from backupalert.storage.redis_client import RedisKeys, get_redis

NO_RESOURCE = "none"


class RedisNotificationStore:
    """Channel, preference and delivery log storage using Redis."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def save_channel(self, channel: NotificationChannel) -> None:
        await self.redis.set(RedisKeys.channel(str(channel.id)), channel.model_dump_json())

    async def get_channel(self, channel_id: uuid.UUID) -> NotificationChannel:
        """Get a channel by ID.

        Raises:
            ChannelNotFoundError: If the channel does not exist
        """
        data = await self.redis.get(RedisKeys.channel(str(channel_id)))
        if not data:
            raise ChannelNotFoundError(f"notification channel {channel_id} not found")
        return NotificationChannel.model_validate_json(data)

    async def save_preference(self, preference: NotificationPreference) -> None:
        """Create or replace a preference and keep the (org, event type) index current."""
        key = RedisKeys.preference(str(preference.id))
        existing = await self.redis.get(key)
        if existing:
            old = NotificationPreference.model_validate_json(existing)
            await self.redis.srem(
                RedisKeys.preference_index(str(old.org_id), old.event_type.value),
                str(old.id),
            )

        await self.redis.set(key, preference.model_dump_json())
        await self.redis.sadd(
            RedisKeys.preference_index(str(preference.org_id), preference.event_type.value),
            str(preference.id),
        )

    async def get_enabled_preferences(
        self, org_id: uuid.UUID, event_type: EventType
    ) -> list[NotificationPreference]:
        """List enabled preferences for an organization and event type."""
        ids = await self.redis.smembers(RedisKeys.preference_index(str(org_id), EventType(event_type).value))
        preferences = []
        for preference_id in ids:
            data = await self.redis.get(RedisKeys.preference(preference_id))
            if not data:
                continue
            preference = NotificationPreference.model_validate_json(data)
            if preference.enabled:
                preferences.append(preference)

        preferences.sort(key=lambda p: p.created_at)
        return preferences

    async def create_log(self, log: NotificationLog) -> None:
        await self.redis.set(RedisKeys.log(str(log.id)), log.model_dump_json())
        await self.redis.zadd(
            RedisKeys.log_index(str(log.org_id)),
            {str(log.id): log.created_at.timestamp()},
        )

    async def update_log(self, log: NotificationLog) -> None:
        await self.redis.set(RedisKeys.log(str(log.id)), log.model_dump_json())

    async def list_logs(self, org_id: uuid.UUID, limit: int = 100) -> list[NotificationLog]:
        """List the most recent delivery log rows for an organization, newest first."""
        ids = await self.redis.zrevrange(RedisKeys.log_index(str(org_id)), 0, limit - 1)
        if not ids:
            return []
        rows = await self.redis.mget([RedisKeys.log(log_id) for log_id in ids])
        return [NotificationLog.model_validate_json(row) for row in rows if row]


class RedisRuleStore:
    """Rule, rule history and suppression storage using Redis."""

    def __init__(self, redis: Redis | None = None, settings: Settings | None = None):
        self._redis = redis
        self._settings = settings or get_settings()

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def save_rule(self, rule: NotificationRule) -> None:
        """Create or replace a rule.

        A rule keeps its position in the definition order across updates
        unless its organization or trigger type changes.
        """
        rule_id = str(rule.id)
        key = RedisKeys.rule(rule_id)

        existing = await self.redis.get(key)
        if existing:
            old = NotificationRule.model_validate_json(existing)
            if old.org_id != rule.org_id or old.trigger_type != rule.trigger_type:
                await self.redis.zrem(
                    RedisKeys.rule_index(str(old.org_id), old.trigger_type.value),
                    rule_id,
                )

        await self.redis.set(key, rule.model_dump_json())

        index = RedisKeys.rule_index(str(rule.org_id), rule.trigger_type.value)
        if await self.redis.zscore(index, rule_id) is None:
            sequence = await self.redis.incr(RedisKeys.RULE_SEQUENCE)
            await self.redis.zadd(index, {rule_id: sequence})

    async def get_rule(self, rule_id: uuid.UUID) -> NotificationRule:
        """Get a rule by ID.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        data = await self.redis.get(RedisKeys.rule(str(rule_id)))
        if not data:
            raise RuleNotFoundError(f"notification rule {rule_id} not found")
        return NotificationRule.model_validate_json(data)

    async def get_enabled_rules(
        self, org_id: uuid.UUID, trigger_type: RuleTriggerType
    ) -> list[NotificationRule]:
        """List enabled rules for an organization and trigger in definition order."""
        ids = await self.redis.zrange(
            RedisKeys.rule_index(str(org_id), RuleTriggerType(trigger_type).value), 0, -1
        )
        rules = []
        for rule_id in ids:
            data = await self.redis.get(RedisKeys.rule(rule_id))
            if not data:
                continue
            rule = NotificationRule.model_validate_json(data)
            if rule.enabled:
                rules.append(rule)
        return rules

    async def create_rule_event(self, event: NotificationRuleEvent) -> None:
        """Record a matched event in the rule history and its count window.

        The history keeps the newest ``rule_history_limit`` entries. The
        window key expires after ``rule_window_retention_minutes`` without
        events; counting extends it to cover longer windows.
        """
        score = event.occurred_at.timestamp()
        await self._append_capped(
            RedisKeys.rule_events(str(event.rule_id)), event.model_dump_json(), score
        )
        window_key = RedisKeys.rule_window(str(event.rule_id), _resource_key(event.resource_id))
        await self.redis.zadd(window_key, {str(event.id): score})
        await self.redis.expire(window_key, self._settings.rule_window_retention_minutes * 60)

    async def count_rule_events(
        self, rule_id: uuid.UUID, resource_id: uuid.UUID | None, since: datetime
    ) -> int:
        """Count a rule's matched events for one resource since a point in time.

        Entries older than ``since`` are trimmed first.
        """
        key = RedisKeys.rule_window(str(rule_id), _resource_key(resource_id))
        await self.redis.zremrangebyscore(key, "-inf", f"({since.timestamp()}")
        count = await self.redis.zcount(key, since.timestamp(), "+inf")
        if count:
            window_seconds = math.ceil((utcnow() - since).total_seconds()) + 60
            ttl = max(window_seconds, self._settings.rule_window_retention_minutes * 60)
            await self.redis.expire(key, ttl)
        return count

    async def list_rule_events(self, rule_id: uuid.UUID, limit: int = 100) -> list[NotificationRuleEvent]:
        rows = await self.redis.zrevrange(RedisKeys.rule_events(str(rule_id)), 0, limit - 1)
        return [NotificationRuleEvent.model_validate_json(row) for row in rows]

    async def create_rule_execution(self, execution: NotificationRuleExecution) -> None:
        await self._append_capped(
            RedisKeys.rule_executions(str(execution.rule_id)),
            execution.model_dump_json(),
            execution.executed_at.timestamp(),
        )

    async def _append_capped(self, key: str, member: str, score: float) -> None:
        await self.redis.zadd(key, {member: score})
        await self.redis.zremrangebyrank(key, 0, -(self._settings.rule_history_limit + 1))

    async def list_rule_executions(
        self, rule_id: uuid.UUID, limit: int = 100
    ) -> list[NotificationRuleExecution]:
        rows = await self.redis.zrevrange(RedisKeys.rule_executions(str(rule_id)), 0, limit - 1)
        return [NotificationRuleExecution.model_validate_json(row) for row in rows]

    async def set_suppressed_until(self, rule_id: uuid.UUID, until: datetime) -> None:
        """Store a suppression deadline that expires on its own."""
        key = RedisKeys.rule_suppressed(str(rule_id))
        seconds = (until - utcnow()).total_seconds()
        if seconds <= 0:
            await self.redis.delete(key)
            return
        await self.redis.set(key, until.isoformat(), ex=math.ceil(seconds))

    async def get_suppressed_until(self, rule_id: uuid.UUID) -> datetime | None:
        data = await self.redis.get(RedisKeys.rule_suppressed(str(rule_id)))
        if not data:
            return None
        return datetime.fromisoformat(data)


def _resource_key(resource_id: uuid.UUID | None) -> str:
    return str(resource_id) if resource_id else NO_RESOURCE
