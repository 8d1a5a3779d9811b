"""RabbitMQ message consumer."""

from typing import Any, Callable, Coroutine

import aio_pika
from aio_pika import IncomingMessage
from aio_pika.abc import AbstractRobustConnection
from pydantic import ValidationError

from backupalert.core.config import get_settings
from backupalert.core.logging import get_logger
from backupalert.models.event import InboundEvent

logger = get_logger(__name__, component="consumer")

MessageHandler = Callable[[InboundEvent], Coroutine[Any, Any, None]]


class RabbitMQConsumer:
    """Consumes ``{event_type, org_id, data}`` envelopes from a durable queue."""

    def __init__(self, handler: MessageHandler):
        """Initialize consumer.

        Args:
            handler: Async function to handle incoming events
        """
        self._settings = get_settings()
        self._handler = handler
        self._connection: AbstractRobustConnection | None = None
        self._should_stop = False

    async def connect(self) -> None:
        """Connect to RabbitMQ."""
        self._connection = await aio_pika.connect_robust(
            self._settings.rabbitmq_url,
            reconnect_interval=5,
        )
        logger.info("Connected to RabbitMQ")

    async def disconnect(self) -> None:
        """Disconnect from RabbitMQ."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Disconnected from RabbitMQ")

    async def start_consuming(self) -> None:
        """Start consuming messages from queue."""
        if not self._connection:
            await self.connect()

        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=10)

        queue = await channel.declare_queue(
            self._settings.rabbitmq_queue,
            durable=True,
        )

        logger.info("Starting message consumption", queue=self._settings.rabbitmq_queue)

        async with queue.iterator() as queue_iter:
            async for message in queue_iter:
                if self._should_stop:
                    break
                await self.process_message(message)

    async def process_message(self, message: IncomingMessage) -> None:
        """Decode, validate and hand one message to the handler.

        Malformed messages are acknowledged and dropped.
        """
        async with message.process():
            event = parse_message(message.body, message.message_id)
            if event is None:
                return
            try:
                await self._handler(event)
            except Exception as e:
                logger.error(
                    "Error processing message",
                    event_type=event.event_type,
                    error=str(e),
                    exc_info=True,
                )

    def stop(self) -> None:
        """Signal consumer to stop."""
        self._should_stop = True
        logger.info("Consumer stop requested")


def parse_message(body: bytes, message_id: str | None = None) -> InboundEvent | None:
    """Parse a message body into an event envelope, or None when it is malformed."""
    try:
        event = InboundEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Invalid event message", message_id=message_id, errors=e.error_count())
        return None

    if not event.event_id and message_id:
        event.event_id = message_id
    return event
