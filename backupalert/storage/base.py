"""Store and crypto interfaces consumed by the dispatch service and rule engine.

Every store call may fail; callers decide per call whether a failure
propagates or only aborts one destination or rule.
"""

import uuid
from datetime import datetime
from typing import Protocol

from backupalert.models.notification import (
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


class Decryptor(Protocol):
    """Turns an encrypted channel configuration blob into plaintext JSON."""

    def decrypt(self, data: bytes) -> bytes: ...


class PassthroughDecryptor:
    """Decryptor for deployments that store channel configuration unencrypted."""

    def decrypt(self, data: bytes) -> bytes:
        return data


class NotificationStore(Protocol):
    """Channels, preferences and the delivery log."""

    async def get_enabled_preferences(
        self, org_id: uuid.UUID, event_type: EventType
    ) -> list[NotificationPreference]: ...

    async def get_channel(self, channel_id: uuid.UUID) -> NotificationChannel:
        """Raises ChannelNotFoundError when the channel does not exist."""
        ...

    async def save_channel(self, channel: NotificationChannel) -> None: ...

    async def save_preference(self, preference: NotificationPreference) -> None: ...

    async def create_log(self, log: NotificationLog) -> None: ...

    async def update_log(self, log: NotificationLog) -> None: ...

    async def list_logs(self, org_id: uuid.UUID, limit: int = 100) -> list[NotificationLog]: ...


class RuleStore(Protocol):
    """Rules, their matched events, executions and suppression state."""

    async def get_enabled_rules(
        self, org_id: uuid.UUID, trigger_type: RuleTriggerType
    ) -> list[NotificationRule]:
        """Return enabled rules in definition order."""
        ...

    async def get_rule(self, rule_id: uuid.UUID) -> NotificationRule:
        """Raises RuleNotFoundError when the rule does not exist."""
        ...

    async def save_rule(self, rule: NotificationRule) -> None: ...

    async def create_rule_event(self, event: NotificationRuleEvent) -> None: ...

    async def count_rule_events(
        self, rule_id: uuid.UUID, resource_id: uuid.UUID | None, since: datetime
    ) -> int: ...

    async def list_rule_events(self, rule_id: uuid.UUID, limit: int = 100) -> list[NotificationRuleEvent]: ...

    async def create_rule_execution(self, execution: NotificationRuleExecution) -> None: ...

    async def list_rule_executions(
        self, rule_id: uuid.UUID, limit: int = 100
    ) -> list[NotificationRuleExecution]: ...

    async def set_suppressed_until(self, rule_id: uuid.UUID, until: datetime) -> None: ...

    async def get_suppressed_until(self, rule_id: uuid.UUID) -> datetime | None: ...
