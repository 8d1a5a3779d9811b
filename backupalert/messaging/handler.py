"""Routes inbound domain events to the dispatch service and the rule engine."""

import time
from collections.abc import Awaitable, Callable
from datetime import timedelta

from pydantic import ValidationError

from backupalert.core.logging import get_logger
from backupalert.engine.rules import RuleEngine
from backupalert.models.event import (
    AgentInfo,
    BackupResult,
    EventContext,
    InboundEvent,
    MaintenanceWindow,
    TestRestoreFailure,
    ValidationFailure,
)
from backupalert.models.notification import EventType
from backupalert.models.rule import ResourceType, RuleTriggerType
from backupalert.notification.service import NotificationService
from backupalert.observability.metrics import EVENTS_PROCESSED, EVENTS_RECEIVED
from backupalert.observability.tracing import TraceContext

logger = get_logger(__name__, component="event_handler")

Routed = tuple[Awaitable[int] | None, EventContext | None]
Route = Callable[[InboundEvent], Routed]

RULE_ONLY_TRIGGERS = frozenset(
    {
        RuleTriggerType.AGENT_HEALTH_WARNING,
        RuleTriggerType.AGENT_HEALTH_CRITICAL,
        RuleTriggerType.STORAGE_USAGE_HIGH,
        RuleTriggerType.REPLICATION_LAG,
        RuleTriggerType.RANSOMWARE_SUSPECTED,
    }
)


class EventHandler:
    """Turns one inbound envelope into preference sends and rule evaluation.

    Both paths run even if the other fails; their failures are logged.
    """

    def __init__(self, service: NotificationService, engine: RuleEngine):
        self._service = service
        self._engine = engine
        self._routes: dict[str, Route] = {
            EventType.BACKUP_SUCCESS.value: self._backup_complete,
            EventType.BACKUP_FAILED.value: self._backup_complete,
            EventType.AGENT_OFFLINE.value: self._agent_offline,
            EventType.MAINTENANCE_SCHEDULED.value: self._maintenance_scheduled,
            EventType.VALIDATION_FAILED.value: self._validation_failed,
            EventType.TEST_RESTORE_FAILED.value: self._test_restore_failed,
        }
        for trigger in RULE_ONLY_TRIGGERS:
            self._routes[trigger.value] = self._rule_only

    async def handle_event(self, event: InboundEvent) -> None:
        """Process one inbound event.

        Args:
            event: Envelope received from the broker
        """
        with TraceContext(event.event_id or None):
            start_time = time.time()
            EVENTS_RECEIVED.labels(event_type=event.event_type).inc()

            route = self._routes.get(event.event_type)
            if route is None:
                logger.warning("Unsupported event type", event_type=event.event_type)
                EVENTS_PROCESSED.labels(event_type=event.event_type, status="ignored").inc()
                return

            status = "success"
            try:
                dispatch, context = route(event)
            except ValidationError as e:
                logger.warning(
                    "Invalid event payload",
                    event_type=event.event_type,
                    errors=e.error_count(),
                )
                EVENTS_PROCESSED.labels(event_type=event.event_type, status="invalid").inc()
                return

            if dispatch is not None:
                try:
                    await dispatch
                except Exception as e:
                    logger.error("Dispatch failed", event_type=event.event_type, error=str(e))
                    status = "error"

            if context is not None:
                try:
                    await self._engine.evaluate_event(context)
                except Exception as e:
                    logger.error("Rule evaluation failed", event_type=event.event_type, error=str(e))
                    status = "error"

            EVENTS_PROCESSED.labels(event_type=event.event_type, status=status).inc()
            logger.info(
                "Event processing complete",
                event_type=event.event_type,
                org_id=str(event.org_id),
                elapsed_ms=int((time.time() - start_time) * 1000),
            )

    def _backup_complete(self, event: InboundEvent) -> Routed:
        success = event.event_type == EventType.BACKUP_SUCCESS.value
        result = BackupResult.model_validate({**event.data, "org_id": event.org_id, "success": success})
        context = EventContext(
            org_id=event.org_id,
            trigger_type=RuleTriggerType.BACKUP_SUCCESS if success else RuleTriggerType.BACKUP_FAILED,
            resource_type=ResourceType.SCHEDULE.value,
            resource_id=result.schedule_id,
            severity=event.data.get("severity", "info" if success else "error"),
            data=event.data,
        )
        return self._service.notify_backup_complete(result), context

    def _agent_offline(self, event: InboundEvent) -> Routed:
        agent = AgentInfo.model_validate(event.data.get("agent", event.data))
        offline_for = timedelta(seconds=float(event.data.get("offline_for_seconds", 0)))
        context = EventContext(
            org_id=event.org_id,
            trigger_type=RuleTriggerType.AGENT_OFFLINE,
            resource_type=ResourceType.AGENT.value,
            resource_id=agent.id,
            severity=event.data.get("severity", "warning"),
            data=event.data,
        )
        return self._service.notify_agent_offline(agent, event.org_id, offline_for), context

    def _maintenance_scheduled(self, event: InboundEvent) -> Routed:
        window = MaintenanceWindow.model_validate({**event.data, "org_id": event.org_id})
        context = EventContext(
            org_id=event.org_id,
            trigger_type=RuleTriggerType.MAINTENANCE_SCHEDULED,
            severity=event.data.get("severity", "info"),
            data=event.data,
        )
        return self._service.notify_maintenance_scheduled(window), context

    def _validation_failed(self, event: InboundEvent) -> Routed:
        failure = ValidationFailure.model_validate({**event.data, "org_id": event.org_id})
        return self._service.notify_validation_failed(failure), None

    def _test_restore_failed(self, event: InboundEvent) -> Routed:
        failure = TestRestoreFailure.model_validate({**event.data, "org_id": event.org_id})
        return self._service.notify_test_restore_failed(failure), None

    def _rule_only(self, event: InboundEvent) -> Routed:
        context = EventContext(
            org_id=event.org_id,
            trigger_type=RuleTriggerType(event.event_type),
            resource_type=event.data.get("resource_type", ""),
            resource_id=event.data.get("resource_id"),
            severity=event.data.get("severity", ""),
            data=event.data,
        )
        return None, context
