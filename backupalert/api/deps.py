"""API dependency injection."""

from typing import Annotated

from fastapi import Depends, Query

from backupalert.core.config import get_settings
from backupalert.engine.rules import RuleEngine
from backupalert.notification.channels.registry import ChannelRegistry
from backupalert.notification.service import NotificationService
from backupalert.storage.base import Decryptor, NotificationStore, PassthroughDecryptor, RuleStore
from backupalert.storage.redis_client import get_redis
from backupalert.storage.redis_store import RedisNotificationStore, RedisRuleStore

_registry: ChannelRegistry | None = None


def get_channel_registry() -> ChannelRegistry:
    """Get or create the process-wide channel registry."""
    global _registry
    if _registry is None:
        _registry = ChannelRegistry()
    return _registry


async def close_channel_registry() -> None:
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None


def get_notification_store() -> NotificationStore:
    """Get notification store instance."""
    return RedisNotificationStore(get_redis())


def get_rule_store() -> RuleStore:
    """Get rule store instance."""
    return RedisRuleStore(get_redis())


def get_decryptor() -> Decryptor:
    return PassthroughDecryptor()


NotificationStoreDep = Annotated[NotificationStore, Depends(get_notification_store)]
RuleStoreDep = Annotated[RuleStore, Depends(get_rule_store)]
DecryptorDep = Annotated[Decryptor, Depends(get_decryptor)]
RegistryDep = Annotated[ChannelRegistry, Depends(get_channel_registry)]


def get_notification_service(
    store: NotificationStoreDep,
    decryptor: DecryptorDep,
    registry: RegistryDep,
) -> NotificationService:
    return NotificationService(store, decryptor=decryptor, registry=registry)


def get_rule_engine(
    rule_store: RuleStoreDep,
    channel_store: NotificationStoreDep,
    decryptor: DecryptorDep,
    registry: RegistryDep,
) -> RuleEngine:
    return RuleEngine(rule_store, channel_store, decryptor=decryptor, registry=registry)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
RuleEngineDep = Annotated[RuleEngine, Depends(get_rule_engine)]


def get_limit(
    limit: int | None = Query(default=None, ge=1, le=1000, description="Maximum items to return"),
) -> int:
    """Get list limit from query, capped by configuration."""
    configured = get_settings().notification_log_limit
    return min(limit or configured, configured)


LimitDep = Annotated[int, Depends(get_limit)]
