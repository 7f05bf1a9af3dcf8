"""Notification worker for processing the notification queue."""

import asyncio

from ruleflow.core.config import Settings, get_settings
from ruleflow.core.errors import StorageError
from ruleflow.core.logging import get_logger
from ruleflow.models.notification import NotificationTask
from ruleflow.models.rule import OutputPlatform
from ruleflow.notification.channels.base import NotificationChannel
from ruleflow.notification.channels.telegram import TelegramChannel
from ruleflow.notification.channels.webhook import WebhookChannel
from ruleflow.observability.metrics import NOTIFICATION_QUEUE_LENGTH, NOTIFICATIONS_SENT
from ruleflow.storage.auxiliary import NotificationQueue
from ruleflow.storage.notification_store import NotificationStore

logger = get_logger(__name__)


class NotificationWorker:
    """Stores in-app notifications and delivers them to external channels.

    The in-app notification is written on the first attempt only; retries
    concern external delivery alone.
    """

    def __init__(
        self,
        queue: NotificationQueue,
        store: NotificationStore,
        channels: dict[str, NotificationChannel] | None = None,
        settings: Settings | None = None,
        retry_base_delay: float = 1.0,
    ):
        self._queue = queue
        self._retry_base_delay = retry_base_delay
        self._store = store
        self._settings = settings or get_settings()
        self._should_stop = False

        if channels is None:
            channels = {
                OutputPlatform.TELEGRAM.value: TelegramChannel(),
                OutputPlatform.WEBHOOK.value: WebhookChannel(),
            }
        self._channels = channels

    async def start(self) -> None:
        """Start processing notification queue."""
        logger.info("Notification worker started")

        while not self._should_stop:
            try:
                task = await self._queue.dequeue(timeout=5)
                if task:
                    await self.process_task(task)
                NOTIFICATION_QUEUE_LENGTH.set(await self._queue.queue_length())
            except Exception as e:
                logger.error("Worker error", error=str(e), exc_info=True)
                await asyncio.sleep(1)

        logger.info("Notification worker stopped")

    def stop(self) -> None:
        """Signal worker to stop."""
        self._should_stop = True

    async def close(self) -> None:
        """Clean up resources."""
        for channel in self._channels.values():
            await channel.close()

    async def process_task(self, task: NotificationTask) -> bool:
        """Process a single notification task.

        Returns:
            True if the task is finished (delivered or nothing to deliver)
        """
        logger.debug("Processing notification", task_id=task.task_id, retry_count=task.retry_count)

        if task.retry_count == 0:
            try:
                await self._store.create_from_task(task)
            except StorageError as e:
                logger.error("In-app notification not stored", task_id=task.task_id, error=e.message)

        platform = task.output_config.platform.value
        if platform == OutputPlatform.NONE.value:
            return True

        channel = self._channels.get(platform)
        if channel is None:
            logger.warning("Unknown channel type", channel=platform)
            return True

        try:
            delivered = await channel.send(task)
        except Exception as e:
            logger.error("Channel send error", channel=platform, error=str(e))
            delivered = False

        NOTIFICATIONS_SENT.labels(channel=platform, status="success" if delivered else "failure").inc()
        if delivered:
            logger.info("Notification delivered", task_id=task.task_id, channel=platform)
            return True

        if task.should_retry(self._settings.notification_max_retry):
            await asyncio.sleep(task.calculate_retry_delay(self._retry_base_delay))
            await self._queue.requeue(task)
            logger.info(
                "Notification requeued for retry",
                task_id=task.task_id,
                retry_count=task.retry_count,
            )
        else:
            await self._queue.move_to_dead_letter(task)
            logger.warning("Notification moved to dead letter", task_id=task.task_id)
        return False
