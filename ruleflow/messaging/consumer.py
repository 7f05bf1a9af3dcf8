"""RabbitMQ trigger event consumer."""

import asyncio
import json
from typing import Any, Callable, Coroutine

import aio_pika
from aio_pika import IncomingMessage
from aio_pika.abc import AbstractRobustConnection
from pydantic import ValidationError

from ruleflow.core.config import Settings, get_settings
from ruleflow.core.errors import StorageError
from ruleflow.core.logging import get_logger
from ruleflow.models.event import TriggerEvent

logger = get_logger(__name__)

# Type alias for message handler
MessageHandler = Callable[[TriggerEvent], Coroutine[Any, Any, None]]


def parse_trigger_message(body: bytes, message_id: str | None = None) -> TriggerEvent | None:
    """Decode a queue message into a trigger event.

    Returns:
        The event, or None if the message is malformed
    """
    try:
        data = json.loads(body.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Invalid JSON message", message_id=message_id, error=str(e))
        return None

    if not isinstance(data, dict):
        logger.warning("Message is not an object", message_id=message_id)
        return None

    if not data.get("event_id") and message_id:
        data["event_id"] = message_id

    try:
        return TriggerEvent.model_validate(data)
    except ValidationError as e:
        logger.warning("Invalid trigger event", message_id=message_id, errors=e.errors(include_url=False))
        return None


class RabbitMQConsumer:
    """RabbitMQ consumer feeding trigger events to a handler.

    Each message is handled in its own task, at most
    ``rabbitmq_prefetch_count`` at a time, so a slow rule run for one user
    never holds up triggers for anyone else.
    """

    def __init__(self, handler: MessageHandler, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._handler = handler
        self._connection: AbstractRobustConnection | None = None
        self._should_stop = False
        self._slots = asyncio.Semaphore(self._settings.rabbitmq_prefetch_count)
        self._in_flight: set[asyncio.Task] = set()

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
        """Start consuming messages from the trigger queue."""
        if not self._connection:
            await self.connect()

        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=self._settings.rabbitmq_prefetch_count)

        queue = await channel.declare_queue(
            self._settings.rabbitmq_queue,
            durable=True,
        )

        logger.info("Starting message consumption", queue=self._settings.rabbitmq_queue)

        try:
            async with queue.iterator() as queue_iter:
                async for message in queue_iter:
                    if self._should_stop:
                        break
                    await self.dispatch(message)
        finally:
            await self.drain()

    async def dispatch(self, message: IncomingMessage) -> asyncio.Task:
        """Start handling a message once a slot is free."""
        await self._slots.acquire()
        task = asyncio.create_task(self._run_message(message))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight message to finish."""
        if self._in_flight:
            logger.info("Waiting for in-flight triggers", count=len(self._in_flight))
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _run_message(self, message: IncomingMessage) -> None:
        try:
            await self._process_message(message)
        finally:
            self._slots.release()

    async def _process_message(self, message: IncomingMessage) -> None:
        """Process a single message.

        Malformed messages and handler errors are logged and acked. A storage
        failure requeues the message so it is redelivered once storage
        recovers.
        """
        async with message.process(requeue=True, ignore_processed=True):
            event = parse_trigger_message(message.body, message.message_id)
            if event is None:
                return

            try:
                await self._handler(event)
            except StorageError as e:
                logger.warning(
                    "Storage unavailable, requeueing trigger",
                    event_id=event.event_id,
                    error=e.message,
                )
                await message.nack(requeue=True)
            except Exception as e:
                logger.error(
                    "Error processing trigger",
                    event_id=event.event_id,
                    error=str(e),
                    exc_info=True,
                )

    def stop(self) -> None:
        """Signal consumer to stop."""
        self._should_stop = True
        logger.info("Consumer stop requested")
