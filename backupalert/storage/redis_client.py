"""Redis client management."""

import redis.asyncio as redis
from redis.asyncio import Redis

from backupalert.core.config import get_settings

_pool: redis.ConnectionPool | None = None


async def init_redis_pool() -> None:
    """Initialize Redis connection pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=20,
        )


async def close_redis_pool() -> None:
    """Close Redis connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


def get_redis() -> Redis:
    """Get Redis client from pool.

    Raises:
        RuntimeError: If pool not initialized
    """
    if _pool is None:
        raise RuntimeError("Redis pool not initialized. Call init_redis_pool() first.")
    return redis.Redis(connection_pool=_pool)


class RedisKeys:
    """Redis key patterns."""

    # Channels and preferences
    CHANNEL = "backupalert:channels:{channel_id}"
    PREFERENCE = "backupalert:prefs:detail:{preference_id}"
    PREFERENCE_INDEX = "backupalert:prefs:index:{org_id}:{event_type}"

    # Delivery log, scored by creation time
    LOG = "backupalert:logs:detail:{log_id}"
    LOG_INDEX = "backupalert:logs:index:{org_id}"

    # Rules, indexed in definition order
    RULE = "backupalert:rules:detail:{rule_id}"
    RULE_INDEX = "backupalert:rules:index:{org_id}:{trigger_type}"
    RULE_SEQUENCE = "backupalert:rules:sequence"

    # Rule history
    RULE_EVENTS = "backupalert:rules:events:{rule_id}"
    RULE_WINDOW = "backupalert:rules:window:{rule_id}:{resource_id}"
    RULE_EXECUTIONS = "backupalert:rules:executions:{rule_id}"
    RULE_SUPPRESSED = "backupalert:rules:suppressed:{rule_id}"

    @classmethod
    def channel(cls, channel_id: str) -> str:
        return cls.CHANNEL.format(channel_id=channel_id)

    @classmethod
    def preference(cls, preference_id: str) -> str:
        return cls.PREFERENCE.format(preference_id=preference_id)

    @classmethod
    def preference_index(cls, org_id: str, event_type: str) -> str:
        return cls.PREFERENCE_INDEX.format(org_id=org_id, event_type=event_type)

    @classmethod
    def log(cls, log_id: str) -> str:
        return cls.LOG.format(log_id=log_id)

    @classmethod
    def log_index(cls, org_id: str) -> str:
        return cls.LOG_INDEX.format(org_id=org_id)

    @classmethod
    def rule(cls, rule_id: str) -> str:
        return cls.RULE.format(rule_id=rule_id)

    @classmethod
    def rule_index(cls, org_id: str, trigger_type: str) -> str:
        return cls.RULE_INDEX.format(org_id=org_id, trigger_type=trigger_type)

    @classmethod
    def rule_events(cls, rule_id: str) -> str:
        return cls.RULE_EVENTS.format(rule_id=rule_id)

    @classmethod
    def rule_window(cls, rule_id: str, resource_id: str) -> str:
        return cls.RULE_WINDOW.format(rule_id=rule_id, resource_id=resource_id)

    @classmethod
    def rule_executions(cls, rule_id: str) -> str:
        return cls.RULE_EXECUTIONS.format(rule_id=rule_id)

    @classmethod
    def rule_suppressed(cls, rule_id: str) -> str:
        return cls.RULE_SUPPRESSED.format(rule_id=rule_id)
