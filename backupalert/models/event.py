"""Domain event models supplied by the surrounding backup platform."""

import uuid
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from backupalert.models.notification import utcnow
from backupalert.models.rule import RuleTriggerType


class BackupResult(BaseModel):
    """Outcome of a completed backup run."""

    org_id: uuid.UUID
    schedule_id: uuid.UUID | None = None
    schedule_name: str = ""
    agent_id: uuid.UUID | None = None
    hostname: str = ""
    snapshot_id: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime = Field(default_factory=utcnow)
    size_bytes: int = Field(default=0, ge=0)
    files_new: int = Field(default=0, ge=0)
    files_changed: int = Field(default=0, ge=0)
    success: bool = True
    error_message: str = ""

    @property
    def duration(self) -> timedelta:
        return self.completed_at - self.started_at


class AgentInfo(BaseModel):
    """Backup agent as seen by the notification layer."""

    id: uuid.UUID
    hostname: str
    last_seen: datetime | None = None


class MaintenanceWindow(BaseModel):
    """Scheduled maintenance announced to tenants."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    org_id: uuid.UUID
    title: str
    message: str = ""
    starts_at: datetime
    ends_at: datetime

    @property
    def duration(self) -> timedelta:
        return self.ends_at - self.starts_at


class ValidationFailure(BaseModel):
    """Post-backup validation that did not pass."""

    org_id: uuid.UUID
    agent_id: uuid.UUID | None = None
    schedule_id: uuid.UUID | None = None
    hostname: str = ""
    schedule_name: str = ""
    snapshot_id: str = ""
    backup_completed_at: datetime = Field(default_factory=utcnow)
    validation_failed_at: datetime = Field(default_factory=utcnow)
    error_message: str = ""
    validation_summary: str = ""
    validation_details: str = ""


class TestRestoreFailure(BaseModel):
    """Sampled test restore that did not verify."""

    __test__ = False

    org_id: uuid.UUID
    repository_id: uuid.UUID | None = None
    repository_name: str = ""
    snapshot_id: str = ""
    sample_percentage: int = Field(default=0, ge=0, le=100)
    started_at: datetime = Field(default_factory=utcnow)
    failed_at: datetime = Field(default_factory=utcnow)
    files_restored: int = Field(default=0, ge=0)
    files_verified: int = Field(default=0, ge=0)
    error_message: str = ""
    consecutive_fails: int = Field(default=1, ge=0)


class EventContext(BaseModel):
    """Event presented to the rule engine."""

    org_id: uuid.UUID
    trigger_type: RuleTriggerType
    resource_type: str = ""
    resource_id: uuid.UUID | None = None
    severity: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class InboundEvent(BaseModel):
    """Envelope of a domain event received from the message broker."""

    event_id: str = ""
    event_type: str = Field(..., min_length=1)
    org_id: uuid.UUID
    data: dict[str, Any] = Field(default_factory=dict)
