"""In-app notification storage."""

import uuid

from redis.asyncio import Redis

from ruleflow.models.notification import Notification, NotificationTask
from ruleflow.storage.redis_client import RedisKeys, get_redis, storage_errors, to_millis


class NotificationStore:
    """Per-user in-app notifications."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def create_from_task(self, task: NotificationTask) -> Notification:
        """Store the in-app notification for a delivered task."""
        notification = Notification(
            id=f"ntf_{uuid.uuid4().hex[:16]}",
            user_id=task.user_id,
            kind=task.kind,
            title=task.title,
            body=task.body,
            rule_id=task.rule_id,
            rule_name=task.rule_name,
            log_id=task.log_id,
        )
        return await self.create(notification)

    async def create(self, notification: Notification) -> Notification:
        async with storage_errors("notification.create"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(RedisKeys.notification_detail(notification.id), notification.model_dump_json())
                pipe.zadd(
                    RedisKeys.notification_user_index(notification.user_id),
                    {notification.id: to_millis(notification.created_at)},
                )
                if not notification.read:
                    pipe.sadd(RedisKeys.notification_unread(notification.user_id), notification.id)
                await pipe.execute()
        return notification

    async def get(self, notification_id: str) -> Notification | None:
        async with storage_errors("notification.get"):
            data = await self.redis.get(RedisKeys.notification_detail(notification_id))
        if not data:
            return None
        return Notification.model_validate_json(data)

    async def list_by_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Notification], int, int]:
        """List a user's notifications, newest first.

        Returns:
            Tuple of (notifications, total matching, unread count)
        """
        async with storage_errors("notification.list"):
            ids = await self.redis.zrevrange(RedisKeys.notification_user_index(user_id), 0, -1)
            unread = await self.redis.smembers(RedisKeys.notification_unread(user_id))
        if unread_only:
            ids = [i for i in ids if i in unread]

        page_ids = ids[offset:offset + limit]
        notifications = []
        for notification_id in page_ids:
            notification = await self.get(notification_id)
            if notification:
                notification.read = notification_id not in unread
                notifications.append(notification)
        return notifications, len(ids), len(unread)

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        """Mark one notification as read.

        Returns:
            True if the notification exists and belongs to ``user_id``
        """
        notification = await self.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        notification.read = True
        async with storage_errors("notification.mark_read"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(RedisKeys.notification_detail(notification_id), notification.model_dump_json())
                pipe.srem(RedisKeys.notification_unread(user_id), notification_id)
                await pipe.execute()
        return True

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every notification of a user as read.

        Returns:
            Number of notifications that were unread
        """
        async with storage_errors("notification.mark_all_read"):
            unread = await self.redis.smembers(RedisKeys.notification_unread(user_id))
            await self.redis.delete(RedisKeys.notification_unread(user_id))
        return len(unread)

    async def delete(self, notification_id: str, user_id: str) -> bool:
        """Delete a notification owned by ``user_id``."""
        notification = await self.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        async with storage_errors("notification.delete"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(RedisKeys.notification_detail(notification_id))
                pipe.zrem(RedisKeys.notification_user_index(user_id), notification_id)
                pipe.srem(RedisKeys.notification_unread(user_id), notification_id)
                await pipe.execute()
        return True
