"""Provider-neutral notification messages built from domain events."""

from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field

from backupalert.models.event import (
    AgentInfo,
    BackupResult,
    MaintenanceWindow,
    TestRestoreFailure,
    ValidationFailure,
)
from backupalert.models.notification import EventType

DEFAULT_SOURCE = "backupalert"


class NotificationMessage(BaseModel):
    """Generic message every channel sender can shape into its wire format."""

    title: str
    body: str = ""
    event_type: str = ""
    severity: str = "info"
    source: str = DEFAULT_SOURCE
    group: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


def format_duration(duration: timedelta) -> str:
    """Format a duration for humans, e.g. ``5 min 3 sec`` or ``2 hr 10 min``."""
    total = max(int(duration.total_seconds()), 0)
    if total < 60:
        return f"{total} seconds"
    if total < 3600:
        minutes, seconds = divmod(total, 60)
        if seconds:
            return f"{minutes} min {seconds} sec"
        return f"{minutes} minutes"
    hours, remainder = divmod(total, 3600)
    minutes = remainder // 60
    if minutes:
        return f"{hours} hr {minutes} min"
    return f"{hours} hours"


def format_bytes(size: int) -> str:
    """Format a byte count with binary units."""
    for unit, factor in (("TB", 1024**4), ("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if size >= factor:
            return f"{size / factor:.2f} {unit}"
    return f"{size} B"


def _lines(*pairs: tuple[str, Any]) -> str:
    return "\n".join(f"{label}: {value}" for label, value in pairs if value not in ("", None))


def backup_complete_message(result: BackupResult) -> NotificationMessage:
    if result.success:
        title = f"Backup Successful: {result.hostname} - {result.schedule_name}"
        body = _lines(
            ("Host", result.hostname),
            ("Schedule", result.schedule_name),
            ("Snapshot", result.snapshot_id),
            ("Duration", format_duration(result.duration)),
            ("Size", format_bytes(result.size_bytes)),
            ("Files", f"{result.files_new} new, {result.files_changed} changed"),
        )
        event_type, severity = EventType.BACKUP_SUCCESS, "info"
    else:
        title = f"Backup Failed: {result.hostname} - {result.schedule_name}"
        body = _lines(
            ("Host", result.hostname),
            ("Schedule", result.schedule_name),
            ("Error", result.error_message),
        )
        event_type, severity = EventType.BACKUP_FAILED, "error"

    return NotificationMessage(
        title=title,
        body=body,
        event_type=event_type.value,
        severity=severity,
        source=result.hostname or DEFAULT_SOURCE,
        group="backup",
        data=result.model_dump(mode="json"),
    )


def agent_offline_message(agent: AgentInfo, offline_for: timedelta) -> NotificationMessage:
    last_seen = agent.last_seen.strftime("%Y-%m-%d %H:%M:%S UTC") if agent.last_seen else ""
    return NotificationMessage(
        title=f"Agent Offline: {agent.hostname}",
        body=_lines(
            ("Host", agent.hostname),
            ("Agent ID", agent.id),
            ("Last seen", last_seen),
            ("Offline for", format_duration(offline_for)),
        ),
        event_type=EventType.AGENT_OFFLINE.value,
        severity="warning",
        source=agent.hostname,
        group="agent",
        data={
            **agent.model_dump(mode="json"),
            "offline_for_seconds": int(offline_for.total_seconds()),
        },
    )


def maintenance_scheduled_message(window: MaintenanceWindow) -> NotificationMessage:
    return NotificationMessage(
        title=f"Scheduled Maintenance: {window.title}",
        body=_lines(
            ("Title", window.title),
            ("Message", window.message),
            ("Starts", window.starts_at.strftime("%Y-%m-%d %H:%M UTC")),
            ("Ends", window.ends_at.strftime("%Y-%m-%d %H:%M UTC")),
            ("Duration", format_duration(window.duration)),
        ),
        event_type=EventType.MAINTENANCE_SCHEDULED.value,
        severity="warning",
        group="maintenance",
        data=window.model_dump(mode="json"),
    )


def validation_failed_message(failure: ValidationFailure) -> NotificationMessage:
    return NotificationMessage(
        title=f"Backup Validation Failed: {failure.hostname}",
        body=_lines(
            ("Host", failure.hostname),
            ("Schedule", failure.schedule_name),
            ("Snapshot", failure.snapshot_id),
            ("Error", failure.error_message),
            ("Summary", failure.validation_summary),
        ),
        event_type=EventType.VALIDATION_FAILED.value,
        severity="error",
        source=failure.hostname or DEFAULT_SOURCE,
        group="backup",
        data=failure.model_dump(mode="json"),
    )


def restore_check_failed_message(failure: TestRestoreFailure) -> NotificationMessage:
    return NotificationMessage(
        title=f"Test Restore Failed: {failure.repository_name}",
        body=_lines(
            ("Repository", failure.repository_name),
            ("Snapshot", failure.snapshot_id),
            ("Sample", f"{failure.sample_percentage}%"),
            ("Files restored", failure.files_restored),
            ("Files verified", failure.files_verified),
            ("Consecutive failures", failure.consecutive_fails),
            ("Error", failure.error_message),
        ),
        event_type=EventType.TEST_RESTORE_FAILED.value,
        severity="error",
        group="restore",
        data=failure.model_dump(mode="json"),
    )


def channel_test_message(channel_name: str) -> NotificationMessage:
    """Message used by the manual per-channel test send."""
    return NotificationMessage(
        title="Test Notification",
        body=f"This is a test notification for channel {channel_name or 'unnamed'}.",
        event_type="test",
        severity="info",
        group="test",
    )
