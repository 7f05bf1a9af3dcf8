"""Auxiliary storage operations (idempotency, caching, notification queue)."""

import json

from redis.asyncio import Redis

from ruleflow.models.notification import NotificationTask
from ruleflow.storage.redis_client import RedisKeys, get_redis, storage_errors


class IdempotencyStore:
    """Trigger event de-duplication."""

    TTL_SECONDS = 3600  # 1 hour

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def is_processed(self, event_id: str) -> bool:
        """Check if a trigger event has been processed."""
        async with storage_errors("idempotency.check"):
            return await self.redis.exists(RedisKeys.processed(event_id)) > 0

    async def mark_processed(self, event_id: str) -> bool:
        """Mark a trigger event as processed.

        Args:
            event_id: Event ID to mark

        Returns:
            True if newly marked, False if already seen
        """
        async with storage_errors("idempotency.mark"):
            result = await self.redis.set(
                RedisKeys.processed(event_id),
                "1",
                nx=True,
                ex=self.TTL_SECONDS,
            )
        return bool(result)

    async def unmark(self, event_id: str) -> None:
        """Forget an event so a redelivery is processed again."""
        async with storage_errors("idempotency.unmark"):
            await self.redis.delete(RedisKeys.processed(event_id))


class ConditionCacheStore:
    """Short-lived cache of topic condition decisions."""

    def __init__(self, redis: Redis | None = None, ttl_seconds: int = 60):
        self._redis = redis
        self._ttl = ttl_seconds

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def get(self, rule_id: str, payload_hash: str) -> dict | None:
        """Get a cached decision.

        Args:
            rule_id: Rule ID
            payload_hash: Hash of condition and payload

        Returns:
            Cached decision if found
        """
        data = await self.redis.get(RedisKeys.condition_cache(rule_id, payload_hash))
        if data:
            return json.loads(data)
        return None

    async def set(self, rule_id: str, payload_hash: str, decision: dict) -> None:
        """Cache a decision for the configured TTL."""
        if self._ttl <= 0:
            return
        await self.redis.setex(
            RedisKeys.condition_cache(rule_id, payload_hash),
            self._ttl,
            json.dumps(decision),
        )


class NotificationQueue:
    """Notification task queue."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def enqueue(self, task: NotificationTask) -> None:
        """Add task to notification queue."""
        await self.redis.lpush(RedisKeys.NOTIFY_QUEUE, task.model_dump_json())

    async def dequeue(self, timeout: int = 5) -> NotificationTask | None:
        """Get next task from queue.

        Args:
            timeout: Blocking timeout in seconds

        Returns:
            Next task if available
        """
        result = await self.redis.brpop(RedisKeys.NOTIFY_QUEUE, timeout=timeout)
        if result:
            _, data = result
            return NotificationTask.model_validate_json(data)
        return None

    async def requeue(self, task: NotificationTask) -> None:
        """Requeue a task with its retry count incremented."""
        task.retry_count += 1
        await self.enqueue(task)

    async def move_to_dead_letter(self, task: NotificationTask) -> None:
        """Move task to dead letter queue."""
        await self.redis.lpush(RedisKeys.NOTIFY_DEAD_LETTER, task.model_dump_json())

    async def queue_length(self) -> int:
        """Get current queue length."""
        return await self.redis.llen(RedisKeys.NOTIFY_QUEUE)
