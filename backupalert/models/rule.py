"""Notification rule domain models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from backupalert.models.notification import utcnow


class RuleTriggerType(str, Enum):
    """Event type that triggers a rule."""

    BACKUP_FAILED = "backup_failed"
    BACKUP_SUCCESS = "backup_success"
    AGENT_OFFLINE = "agent_offline"
    AGENT_HEALTH_WARNING = "agent_health_warning"
    AGENT_HEALTH_CRITICAL = "agent_health_critical"
    STORAGE_USAGE_HIGH = "storage_usage_high"
    REPLICATION_LAG = "replication_lag"
    RANSOMWARE_SUSPECTED = "ransomware_suspected"
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"


class RuleActionType(str, Enum):
    """Action taken when a rule triggers."""

    NOTIFY_CHANNEL = "notify_channel"
    ESCALATE = "escalate"
    SUPPRESS = "suppress"
    WEBHOOK = "webhook"


class ResourceType(str, Enum):
    """Resource kinds that rule allow-lists can restrict."""

    AGENT = "agent"
    SCHEDULE = "schedule"
    REPOSITORY = "repository"


SEVERITY_WILDCARD = "*"


class RuleConditions(BaseModel):
    """Filters and count threshold for a rule."""

    count: int = Field(default=0, ge=0, description="Events required within the window")
    time_window_minutes: int = Field(default=0, ge=0, description="Counting window in minutes")
    severity: str = Field(default="", description="Exact severity match, empty or '*' for any")
    agent_ids: list[uuid.UUID] = Field(default_factory=list)
    schedule_ids: list[uuid.UUID] = Field(default_factory=list)
    repository_ids: list[uuid.UUID] = Field(default_factory=list)

    def allow_list(self, resource_type: str) -> list[uuid.UUID]:
        """Return the allow-list that applies to a resource type."""
        if resource_type == ResourceType.AGENT.value:
            return self.agent_ids
        if resource_type == ResourceType.SCHEDULE.value:
            return self.schedule_ids
        if resource_type == ResourceType.REPOSITORY.value:
            return self.repository_ids
        return []


class NotifyChannelAction(BaseModel):
    """Send the rule message to a channel."""

    type: Literal["notify_channel"] = "notify_channel"
    channel_id: uuid.UUID
    message: str = ""


class EscalateAction(BaseModel):
    """Notify a different channel with an escalation prefix."""

    type: Literal["escalate"] = "escalate"
    escalate_to_channel_id: uuid.UUID
    message: str = ""


class SuppressAction(BaseModel):
    """Suppress further triggers of the rule for a duration."""

    type: Literal["suppress"] = "suppress"
    duration_minutes: int = Field(default=0, ge=0, description="0 uses the configured default")


class WebhookAction(BaseModel):
    """POST the event to a URL through the signed transport."""

    type: Literal["webhook"] = "webhook"
    webhook_url: str = Field(..., min_length=1)
    secret: str = ""


RuleAction = Annotated[
    Union[NotifyChannelAction, EscalateAction, SuppressAction, WebhookAction],
    Field(discriminator="type"),
]


class NotificationRule(BaseModel):
    """Tenant-defined conditional notification policy."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    trigger_type: RuleTriggerType
    enabled: bool = True
    priority: int = Field(default=0, description="Lower value is evaluated first")
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    actions: list[RuleAction] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationRuleEvent(BaseModel):
    """Record that an event matched a rule's filters."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    rule_id: uuid.UUID
    trigger_type: RuleTriggerType
    resource_type: str = ""
    resource_id: uuid.UUID | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)


class NotificationRuleExecution(BaseModel):
    """Outcome of a rule that reached its trigger decision."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    rule_id: uuid.UUID
    triggered_by_event_id: uuid.UUID | None = None
    actions_taken: list[RuleAction] = Field(default_factory=list)
    success: bool = True
    error_message: str = ""
    executed_at: datetime = Field(default_factory=utcnow)

    def mark_failed(self, error_message: str) -> None:
        self.success = False
        self.error_message = error_message
