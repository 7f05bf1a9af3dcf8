"""Worker process entry point: trigger consumption, scheduling and notifications."""

import asyncio
import signal

from ruleflow.core.config import get_settings
from ruleflow.core.errors import StorageError
from ruleflow.core.logging import get_logger, setup_logging
from ruleflow.engine.service import AutomationService, build_service
from ruleflow.messaging.consumer import RabbitMQConsumer
from ruleflow.messaging.handler import TriggerHandler
from ruleflow.notification.worker import NotificationWorker
from ruleflow.storage.auxiliary import IdempotencyStore, NotificationQueue
from ruleflow.storage.notification_store import NotificationStore
from ruleflow.storage.redis_client import (
    close_redis_pool,
    get_redis,
    init_redis_pool,
)

logger = get_logger(__name__)

RETENTION_SWEEP_SECONDS = 24 * 60 * 60


class WorkerManager:
    """Manager for coordinating worker loops."""

    def __init__(self):
        self._settings = get_settings()
        self._service: AutomationService | None = None
        self._consumer: RabbitMQConsumer | None = None
        self._notification_worker: NotificationWorker | None = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all worker loops."""
        setup_logging(component="worker")
        logger.info("Starting worker manager")

        await init_redis_pool()
        redis = get_redis()

        self._service = build_service(redis, self._settings)
        handler = TriggerHandler(self._service, IdempotencyStore(redis))
        self._consumer = RabbitMQConsumer(handler, self._settings)
        self._notification_worker = NotificationWorker(
            NotificationQueue(redis),
            NotificationStore(redis),
            settings=self._settings,
        )

        try:
            await asyncio.gather(
                self._run_consumer(),
                self._run_scheduler(),
                self._run_notification_worker(),
                self._run_retention_sweep(),
            )
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

    async def _run_scheduler(self) -> None:
        if self._service:
            try:
                await self._service.scheduler.run_forever(
                    self._settings.scheduler_tick_seconds,
                    self._shutdown_event,
                )
            except asyncio.CancelledError:
                logger.info("Scheduler cancelled")

    async def _run_notification_worker(self) -> None:
        if self._notification_worker:
            try:
                await self._notification_worker.start()
            except asyncio.CancelledError:
                logger.info("Notification worker cancelled")
            except Exception as e:
                logger.error("Notification worker error", error=str(e), exc_info=True)

    async def _run_retention_sweep(self) -> None:
        """Delete execution history older than the retention window once a day."""
        if not self._service:
            return
        while not self._shutdown_event.is_set():
            try:
                deleted = await self._service.log_store.delete_older_than(self._settings.log_retention_days)
                logger.info(
                    "Retention sweep complete",
                    deleted=deleted,
                    retention_days=self._settings.log_retention_days,
                )
            except StorageError as e:
                logger.error("Retention sweep failed", error=e.message)
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=RETENTION_SWEEP_SECONDS)
            except asyncio.TimeoutError:
                continue

    async def stop(self) -> None:
        """Signal workers to stop."""
        logger.info("Stopping workers")
        if self._consumer:
            self._consumer.stop()
        if self._notification_worker:
            self._notification_worker.stop()
        self._shutdown_event.set()

    async def _cleanup(self) -> None:
        logger.info("Cleaning up resources")
        if self._consumer:
            await self._consumer.disconnect()
        if self._notification_worker:
            await self._notification_worker.close()
        if self._service:
            await self._service.close()
        await close_redis_pool()
        logger.info("Cleanup complete")


async def run() -> None:
    """Run the worker until SIGINT or SIGTERM."""
    manager = WorkerManager()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(manager.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await manager.start()


def main() -> None:
    """Console entry point for the worker process."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
