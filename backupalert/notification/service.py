"""Preference-driven notification fan-out with a durable delivery log."""

import asyncio
import uuid
from collections.abc import Coroutine
from datetime import timedelta
from typing import Any

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import NotificationError
from backupalert.core.logging import get_logger
from backupalert.models.event import (
    AgentInfo,
    BackupResult,
    MaintenanceWindow,
    TestRestoreFailure,
    ValidationFailure,
)
from backupalert.models.notification import (
    ChannelConfig,
    EventType,
    NotificationChannel,
    NotificationLog,
    NotificationPreference,
)
from backupalert.notification.channels.base import ChannelSender
from backupalert.notification.channels.registry import ChannelRegistry
from backupalert.notification.messages import (
    NotificationMessage,
    agent_offline_message,
    backup_complete_message,
    channel_test_message,
    maintenance_scheduled_message,
    restore_check_failed_message,
    validation_failed_message,
)
from backupalert.observability.metrics import (
    DISPATCH_TASKS_IN_FLIGHT,
    NOTIFICATIONS_DISPATCHED,
)
from backupalert.storage.base import Decryptor, NotificationStore, PassthroughDecryptor

logger = get_logger(__name__, component="dispatch")

REDACTED_URL = "[redacted-url]"


def redact_recipient(recipient: str) -> str:
    """Replace URL-looking recipients, which may embed tokens, with a placeholder."""
    if recipient.strip().lower().startswith(("http://", "https://")):
        return REDACTED_URL
    return recipient


def describe_error(error: Exception) -> str:
    """Error text safe to persist on a log row."""
    if isinstance(error, NotificationError):
        return str(error)
    return f"unexpected error: {type(error).__name__}"


class NotificationService:
    """Sends domain events to every channel an organization subscribed.

    Each ``notify_*`` call enumerates enabled preferences, then starts one
    task per preference and returns without waiting for them. Only the
    preference query can fail the call; every later failure stays inside
    its own task and ends up in the log or in the application log.
    """

    def __init__(
        self,
        store: NotificationStore,
        decryptor: Decryptor | None = None,
        registry: ChannelRegistry | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._store = store
        self._decryptor = decryptor or PassthroughDecryptor()
        self._owns_registry = registry is None
        self._registry = registry or ChannelRegistry(settings=self._settings)
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    @property
    def pending_tasks(self) -> int:
        """Number of delivery tasks still running."""
        return len(self._tasks)

    async def notify_backup_complete(self, result: BackupResult) -> int:
        """Notify subscribers that a backup succeeded or failed.

        Returns:
            Number of delivery tasks started
        """
        event_type = EventType.BACKUP_SUCCESS if result.success else EventType.BACKUP_FAILED
        return await self._dispatch(result.org_id, event_type, backup_complete_message(result))

    async def notify_agent_offline(
        self,
        agent: AgentInfo,
        org_id: uuid.UUID,
        offline_for: timedelta,
    ) -> int:
        return await self._dispatch(
            org_id,
            EventType.AGENT_OFFLINE,
            agent_offline_message(agent, offline_for),
        )

    async def notify_maintenance_scheduled(self, window: MaintenanceWindow) -> int:
        return await self._dispatch(
            window.org_id,
            EventType.MAINTENANCE_SCHEDULED,
            maintenance_scheduled_message(window),
        )

    async def notify_validation_failed(self, failure: ValidationFailure) -> int:
        return await self._dispatch(
            failure.org_id,
            EventType.VALIDATION_FAILED,
            validation_failed_message(failure),
        )

    async def notify_test_restore_failed(self, failure: TestRestoreFailure) -> int:
        return await self._dispatch(
            failure.org_id,
            EventType.TEST_RESTORE_FAILED,
            restore_check_failed_message(failure),
        )

    async def test_channel(self, channel: NotificationChannel) -> NotificationLog:
        """Send a test message through the production delivery path.

        Returns:
            The finalized log row

        Raises:
            ConfigurationError: Channel configuration cannot be used
            NotificationError: Delivery failed, same errors as a real event
        """
        sender, config = self._registry.load(channel, self._decryptor)
        message = channel_test_message(channel.name)
        log, error = await self._send_logged(channel.org_id, channel, sender, config, message)
        if error is not None:
            raise error
        return log

    async def _dispatch(
        self,
        org_id: uuid.UUID,
        event_type: EventType,
        message: NotificationMessage,
    ) -> int:
        preferences = await self._store.get_enabled_preferences(org_id, event_type)
        if not preferences:
            logger.debug("No enabled preferences", org_id=str(org_id), event_type=event_type.value)
            return 0

        for preference in preferences:
            self._spawn(self._deliver(org_id, preference, message))

        logger.info(
            "Notifications dispatched",
            org_id=str(org_id),
            event_type=event_type.value,
            destinations=len(preferences),
        )
        return len(preferences)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        DISPATCH_TASKS_IN_FLIGHT.inc()
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        DISPATCH_TASKS_IN_FLIGHT.dec()
        if not task.cancelled() and task.exception() is not None:
            logger.error("Delivery task crashed", error=repr(task.exception()))

    async def _deliver(
        self,
        org_id: uuid.UUID,
        preference: NotificationPreference,
        message: NotificationMessage,
    ) -> None:
        channel_id = str(preference.channel_id)
        try:
            channel = await self._store.get_channel(preference.channel_id)
        except Exception as e:
            logger.error("Failed to get notification channel", channel_id=channel_id, error=str(e))
            return

        if not channel.enabled:
            logger.info("Channel disabled, skipping", channel_id=channel_id)
            return

        try:
            sender, config = self._registry.load(channel, self._decryptor)
        except Exception as e:
            logger.error(
                "Failed to load channel config",
                channel_id=channel_id,
                channel_type=channel.type.value,
                error=describe_error(e),
            )
            return

        await self._send_logged(org_id, channel, sender, config, message)

    async def _send_logged(
        self,
        org_id: uuid.UUID,
        channel: NotificationChannel,
        sender: ChannelSender,
        config: ChannelConfig,
        message: NotificationMessage,
    ) -> tuple[NotificationLog, Exception | None]:
        log = NotificationLog(
            org_id=org_id,
            channel_id=channel.id,
            event_type=message.event_type,
            subject=message.title,
        )
        try:
            await self._store.create_log(log)
        except Exception as e:
            logger.error("Failed to create notification log", log_id=str(log.id), error=str(e))

        error: Exception | None = None
        try:
            await sender.send(config, message)
        except Exception as e:
            error = e

        self._finalize(log, sender.recipient(config), error)
        NOTIFICATIONS_DISPATCHED.labels(channel=channel.type.value, status=log.status.value).inc()

        if error is None:
            logger.info(
                "Notification sent",
                channel_id=str(channel.id),
                channel_type=channel.type.value,
                event_type=message.event_type,
            )
        else:
            logger.warning(
                "Notification failed",
                channel_id=str(channel.id),
                channel_type=channel.type.value,
                event_type=message.event_type,
                error=log.error_message,
            )

        try:
            await self._store.update_log(log)
        except Exception as e:
            logger.error("Failed to update notification log", log_id=str(log.id), error=str(e))

        return log, error

    @staticmethod
    def _finalize(log: NotificationLog, recipient: str, error: Exception | None) -> None:
        log.recipient = redact_recipient(recipient)
        if error is None:
            log.mark_sent()
        else:
            log.mark_failed(describe_error(error))

    async def close(self) -> None:
        """Wait for in-flight deliveries, then release senders this service created."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_registry:
            await self._registry.close()
