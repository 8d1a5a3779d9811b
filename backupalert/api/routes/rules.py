"""Notification rule API routes."""

import uuid

from fastapi import APIRouter

from backupalert.api.deps import LimitDep, RuleEngineDep, RuleStoreDep
from backupalert.models.rule import NotificationRuleEvent, NotificationRuleExecution
from backupalert.schemas.common import APIResponse, ListResponse
from backupalert.schemas.rule import RuleTestRequest

router = APIRouter(prefix="/rules", tags=["rules"])


@router.post("/{rule_id}/test", response_model=APIResponse[NotificationRuleExecution])
async def test_rule(
    rule_id: uuid.UUID,
    data: RuleTestRequest,
    store: RuleStoreDep,
    engine: RuleEngineDep,
) -> APIResponse[NotificationRuleExecution]:
    """Dry-run a rule's filters against sample event data.

    Nothing is persisted and no notification is sent.
    """
    rule = await store.get_rule(rule_id)
    execution = await engine.test_rule(rule, data.event_data)
    return APIResponse(data=execution)


@router.get("/{rule_id}/events", response_model=ListResponse[NotificationRuleEvent])
async def list_rule_events(
    rule_id: uuid.UUID,
    store: RuleStoreDep,
    limit: LimitDep,
) -> ListResponse[NotificationRuleEvent]:
    """List events that matched a rule's filters, newest first."""
    await store.get_rule(rule_id)
    events = await store.list_rule_events(rule_id, limit=limit)
    return ListResponse(data=events, total=len(events))


@router.get("/{rule_id}/executions", response_model=ListResponse[NotificationRuleExecution])
async def list_rule_executions(
    rule_id: uuid.UUID,
    store: RuleStoreDep,
    limit: LimitDep,
) -> ListResponse[NotificationRuleExecution]:
    """List a rule's executions, newest first."""
    await store.get_rule(rule_id)
    executions = await store.list_rule_executions(rule_id, limit=limit)
    return ListResponse(data=executions, total=len(executions))
