"""Worker process entry point: consumes domain events and delivers notifications."""

import asyncio
import signal

from backupalert.core.config import get_settings
from backupalert.core.logging import get_logger, setup_logging
from backupalert.engine.rules import RuleEngine
from backupalert.messaging.consumer import RabbitMQConsumer
from backupalert.messaging.handler import EventHandler
from backupalert.notification.channels.registry import ChannelRegistry
from backupalert.notification.service import NotificationService
from backupalert.storage.base import PassthroughDecryptor
from backupalert.storage.redis_client import (
    close_redis_pool,
    get_redis,
    init_redis_pool,
)
from backupalert.storage.redis_store import RedisNotificationStore, RedisRuleStore

logger = get_logger(__name__)


class WorkerManager:
    """Wires stores, dispatch service, rule engine and consumer together."""

    def __init__(self):
        self._settings = get_settings()
        self._consumer: RabbitMQConsumer | None = None
        self._service: NotificationService | None = None
        self._engine: RuleEngine | None = None
        self._registry: ChannelRegistry | None = None

    async def start(self) -> None:
        """Start consuming until stopped."""
        setup_logging()
        logger.info(
            "Starting worker",
            air_gap_mode=self._settings.air_gap_mode,
            suppression_enforced=self._settings.rule_suppression_enforced,
        )

        await init_redis_pool()
        redis = get_redis()
        notification_store = RedisNotificationStore(redis)
        decryptor = PassthroughDecryptor()

        self._registry = ChannelRegistry(settings=self._settings)
        self._service = NotificationService(
            notification_store,
            decryptor=decryptor,
            registry=self._registry,
            settings=self._settings,
        )
        self._engine = RuleEngine(
            RedisRuleStore(redis),
            notification_store,
            decryptor=decryptor,
            registry=self._registry,
            settings=self._settings,
        )
        handler = EventHandler(self._service, self._engine)
        self._consumer = RabbitMQConsumer(handler.handle_event)

        try:
            await self._run_consumer()
        finally:
            await self._cleanup()

    async def _run_consumer(self) -> None:
        if self._consumer:
            try:
                await self._consumer.start_consuming()
            except asyncio.CancelledError:
                logger.info("Consumer cancelled")
            except Exception as e:
                logger.error("Consumer error", error=str(e), exc_info=True)

    async def stop(self) -> None:
        """Signal the consumer to stop."""
        logger.info("Stopping worker")
        if self._consumer:
            self._consumer.stop()

    async def _cleanup(self) -> None:
        logger.info("Cleaning up resources")
        if self._consumer:
            await self._consumer.disconnect()
        if self._service:
            logger.info("Waiting for in-flight deliveries", pending=self._service.pending_tasks)
            await self._service.close()
        if self._registry:
            await self._registry.close()
        await close_redis_pool()
        logger.info("Cleanup complete")


async def main() -> None:
    """Main entry point for worker process."""
    manager = WorkerManager()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(manager.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await manager.start()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
