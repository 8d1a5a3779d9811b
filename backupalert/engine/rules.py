"""Tenant rule evaluation: filters, count-over-window thresholds and ordered actions."""

import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import ConfigurationError
from backupalert.core.logging import get_logger
from backupalert.models.event import EventContext
from backupalert.models.notification import utcnow
from backupalert.models.rule import (
    SEVERITY_WILDCARD,
    EscalateAction,
    NotificationRule,
    NotificationRuleEvent,
    NotificationRuleExecution,
    NotifyChannelAction,
    RuleAction,
    SuppressAction,
    WebhookAction,
)
from backupalert.notification.channels.registry import ChannelRegistry
from backupalert.notification.messages import NotificationMessage
from backupalert.notification.service import describe_error
from backupalert.notification.transport import WebhookPayload, WebhookTransport
from backupalert.observability.metrics import (
    RULE_ACTION_FAILURES,
    RULES_EVALUATED,
    RULES_TRIGGERED,
)
from backupalert.storage.base import (
    Decryptor,
    NotificationStore,
    PassthroughDecryptor,
    RuleStore,
)

logger = get_logger(__name__, component="rule_engine")

ESCALATION_PREFIX = "[ESCALATION] "

ActionHandler = Callable[[NotificationRule, EventContext, Any], Awaitable[None]]


def sort_rules(rules: list[NotificationRule]) -> list[NotificationRule]:
    """Order rules by ascending priority, keeping definition order for ties."""
    return sorted(rules, key=lambda rule: rule.priority)


def matches_filters(rule: NotificationRule, event: EventContext) -> bool:
    """Check a rule's severity filter and resource allow-lists against an event."""
    conditions = rule.conditions

    if conditions.severity and conditions.severity != SEVERITY_WILDCARD:
        if conditions.severity != event.severity:
            return False

    allowed = conditions.allow_list(event.resource_type)
    if allowed and event.resource_id not in allowed:
        return False

    return True


class RuleEngine:
    """Evaluates an event against every enabled rule of its organization.

    Rules run one after another in priority order. A failure while
    evaluating one rule is logged and never stops the next one.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        channel_store: NotificationStore,
        decryptor: Decryptor | None = None,
        registry: ChannelRegistry | None = None,
        transport: WebhookTransport | None = None,
        settings: Settings | None = None,
    ):
        """Initialize engine.

        Args:
            rule_store: Rules, rule events, executions and suppression state
            channel_store: Channel lookup for notify and escalate actions
            decryptor: Channel config decryptor
            registry: Channel senders, shared with the dispatch service
            transport: Transport for webhook actions, defaults to the registry's
            settings: Application settings
        """
        self._settings = settings or get_settings()
        self._rules = rule_store
        self._channels = channel_store
        self._decryptor = decryptor or PassthroughDecryptor()
        self._owns_registry = registry is None
        self._registry = registry or ChannelRegistry(transport=transport, settings=self._settings)
        self._transport = transport or self._registry.transport
        self._handlers: dict[str, ActionHandler] = {
            "notify_channel": self._notify_channel,
            "escalate": self._escalate,
            "suppress": self._suppress,
            "webhook": self._webhook,
        }

    async def evaluate_event(self, event: EventContext) -> int:
        """Evaluate an event against the organization's enabled rules.

        Args:
            event: Event to evaluate

        Returns:
            Number of rules that triggered

        Raises:
            Exception: Only when loading the rules fails
        """
        rules = await self._rules.get_enabled_rules(event.org_id, event.trigger_type)
        if not rules:
            return 0

        triggered = 0
        for rule in sort_rules(rules):
            RULES_EVALUATED.labels(trigger_type=event.trigger_type.value).inc()
            try:
                if await self._evaluate_rule(rule, event):
                    triggered += 1
            except Exception as e:
                logger.error(
                    "Rule evaluation failed",
                    rule_id=str(rule.id),
                    rule_name=rule.name,
                    error=describe_error(e),
                )

        logger.debug(
            "Event evaluated",
            org_id=str(event.org_id),
            trigger_type=event.trigger_type.value,
            rules=len(rules),
            triggered=triggered,
        )
        return triggered

    async def test_rule(
        self,
        rule: NotificationRule,
        event_data: dict[str, Any] | None = None,
    ) -> NotificationRuleExecution:
        """Dry-run a rule's filters against sample event data.

        Nothing is persisted and no action runs; the returned execution
        lists the actions a real trigger would attempt.

        Raises:
            ConfigurationError: If the sample event does not match the rule filters
        """
        data = dict(event_data or {})
        try:
            event = EventContext(
                org_id=rule.org_id,
                trigger_type=rule.trigger_type,
                resource_type=str(data.get("resource_type", "")),
                resource_id=data.get("resource_id"),
                severity=str(data.get("severity", "")),
                data=data,
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid test event: {e.error_count()} errors") from e

        if not matches_filters(rule, event):
            raise ConfigurationError("event does not match rule filters")

        execution = NotificationRuleExecution(
            org_id=rule.org_id,
            rule_id=rule.id,
            actions_taken=list(rule.actions),
        )
        logger.info("Rule test completed", rule_id=str(rule.id), actions=len(rule.actions))
        return execution

    async def _evaluate_rule(self, rule: NotificationRule, event: EventContext) -> bool:
        if not matches_filters(rule, event):
            return False

        rule_event = NotificationRuleEvent(
            org_id=event.org_id,
            rule_id=rule.id,
            trigger_type=event.trigger_type,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            event_data=event.data,
        )
        await self._rules.create_rule_event(rule_event)

        if not await self._threshold_reached(rule, event):
            return False

        if await self._is_suppressed(rule):
            logger.info("Rule suppressed", rule_id=str(rule.id), rule_name=rule.name)
            return False

        RULES_TRIGGERED.labels(trigger_type=event.trigger_type.value).inc()
        logger.info("Rule triggered", rule_id=str(rule.id), rule_name=rule.name)

        execution = NotificationRuleExecution(
            org_id=event.org_id,
            rule_id=rule.id,
            triggered_by_event_id=rule_event.id,
        )
        await self._execute_actions(rule, event, execution)
        await self._rules.create_rule_execution(execution)
        return True

    async def _threshold_reached(self, rule: NotificationRule, event: EventContext) -> bool:
        count = rule.conditions.count
        if count <= 1:
            return True

        window = rule.conditions.time_window_minutes or self._settings.rule_default_window_minutes
        since = utcnow() - timedelta(minutes=window)
        matched = await self._rules.count_rule_events(rule.id, event.resource_id, since)
        logger.debug(
            "Count condition checked",
            rule_id=str(rule.id),
            matched=matched,
            required=count,
            window_minutes=window,
        )
        return matched >= count

    async def _is_suppressed(self, rule: NotificationRule) -> bool:
        if not self._settings.rule_suppression_enforced:
            return False
        until = await self._rules.get_suppressed_until(rule.id)
        return until is not None and until > utcnow()

    async def _execute_actions(
        self,
        rule: NotificationRule,
        event: EventContext,
        execution: NotificationRuleExecution,
    ) -> None:
        for action in rule.actions:
            execution.actions_taken.append(action)
            try:
                await self._run_action(rule, event, action)
            except Exception as e:
                RULE_ACTION_FAILURES.labels(action=action.type).inc()
                execution.mark_failed(describe_error(e))
                logger.warning(
                    "Rule action failed",
                    rule_id=str(rule.id),
                    action=action.type,
                    error=execution.error_message,
                )
                return

    async def _run_action(self, rule: NotificationRule, event: EventContext, action: RuleAction) -> None:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise ConfigurationError(f"unknown action type: {action.type}")
        await handler(rule, event, action)

    async def _notify_channel(
        self,
        rule: NotificationRule,
        event: EventContext,
        action: NotifyChannelAction,
    ) -> None:
        await self._send_to_channel(rule, event, action.channel_id, action.message)

    async def _escalate(
        self,
        rule: NotificationRule,
        event: EventContext,
        action: EscalateAction,
    ) -> None:
        logger.info(
            "Escalating",
            rule_id=str(rule.id),
            channel_id=str(action.escalate_to_channel_id),
        )
        await self._send_to_channel(
            rule,
            event,
            action.escalate_to_channel_id,
            f"{ESCALATION_PREFIX}{action.message}",
        )

    async def _suppress(
        self,
        rule: NotificationRule,
        event: EventContext,
        action: SuppressAction,
    ) -> None:
        duration = action.duration_minutes or self._settings.rule_default_suppress_minutes
        if not self._settings.rule_suppression_enforced:
            logger.info("Suppression requested", rule_id=str(rule.id), duration_minutes=duration)
            return

        until = utcnow() + timedelta(minutes=duration)
        await self._rules.set_suppressed_until(rule.id, until)
        logger.info(
            "Rule suppressed until",
            rule_id=str(rule.id),
            until=until.isoformat(),
        )

    async def _webhook(
        self,
        rule: NotificationRule,
        event: EventContext,
        action: WebhookAction,
    ) -> None:
        payload = WebhookPayload(
            event_type=event.trigger_type.value,
            data={
                "rule_id": str(rule.id),
                "rule_name": rule.name,
                "org_id": str(event.org_id),
                "resource_type": event.resource_type,
                "resource_id": str(event.resource_id) if event.resource_id else None,
                "severity": event.severity,
                "event": event.data,
            },
        )
        await self._transport.send(action.webhook_url, payload, secret=action.secret)

    async def _send_to_channel(
        self,
        rule: NotificationRule,
        event: EventContext,
        channel_id: uuid.UUID,
        text: str,
    ) -> None:
        channel = await self._channels.get_channel(channel_id)
        if not channel.enabled:
            logger.debug("Channel disabled, skipping", rule_id=str(rule.id), channel_id=str(channel_id))
            return

        sender, config = self._registry.load(channel, self._decryptor)
        logger.info(
            "Sending rule notification",
            rule_id=str(rule.id),
            channel_id=str(channel.id),
            channel_type=channel.type.value,
        )
        await sender.send(config, build_rule_message(rule, event, text))

    async def close(self) -> None:
        if self._owns_registry:
            await self._registry.close()


def build_rule_message(rule: NotificationRule, event: EventContext, text: str) -> NotificationMessage:
    """Build the message a triggered rule sends to a channel."""
    title = rule.name
    if text.startswith(ESCALATION_PREFIX):
        title = f"{ESCALATION_PREFIX}{rule.name}"
    body = text.strip() or f"Rule {rule.name} triggered by {event.trigger_type.value}"
    return NotificationMessage(
        title=title,
        body=body,
        event_type=event.trigger_type.value,
        severity=event.severity or "warning",
        group="rule",
        data={
            "rule_id": str(rule.id),
            "rule_name": rule.name,
            "resource_type": event.resource_type,
            "resource_id": str(event.resource_id) if event.resource_id else None,
            **event.data,
        },
    )
