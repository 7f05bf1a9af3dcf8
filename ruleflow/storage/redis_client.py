"""Redis client management."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ruleflow.core.config import get_settings
from ruleflow.core.errors import StorageError

# Global connection pool
_pool: redis.ConnectionPool | None = None


async def init_redis_pool() -> None:
    """Initialize Redis connection pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=50,
        )


async def close_redis_pool() -> None:
    """Close Redis connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


def get_redis() -> Redis:
    """Get Redis client from pool.

    Returns:
        Redis client instance

    Raises:
        RuntimeError: If pool not initialized
    """
    if _pool is None:
        raise RuntimeError("Redis pool not initialized. Call init_redis_pool() first.")
    return redis.Redis(connection_pool=_pool)


@asynccontextmanager
async def storage_errors(operation: str) -> AsyncIterator[None]:
    """Translate Redis failures into ``StorageError``.

    Usage:
        async with storage_errors("rule.create"):
            await r.hset(...)
    """
    try:
        yield
    except RedisError as e:
        raise StorageError(f"{operation} failed: {e}", {"operation": operation}) from e


def to_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


# Key prefixes
class RedisKeys:
    """Redis key patterns."""

    # Rules
    RULE_DETAIL = "ruleflow:rules:detail:{rule_id}"
    RULE_USER_INDEX = "ruleflow:rules:user:{user_id}"
    RULE_TRIGGER_INDEX = "ruleflow:rules:trigger:{user_id}:{trigger_type}"
    RULE_SCHEDULE = "ruleflow:rules:schedule"

    # Execution logs
    LOG_DETAIL = "ruleflow:logs:detail:{log_id}"
    LOG_RULE_INDEX = "ruleflow:logs:rule:{rule_id}"
    LOG_USER_INDEX = "ruleflow:logs:user:{user_id}"
    LOG_ALL = "ruleflow:logs:all"

    # Notifications
    NOTIFICATION_DETAIL = "ruleflow:notifications:detail:{notification_id}"
    NOTIFICATION_USER_INDEX = "ruleflow:notifications:user:{user_id}"
    NOTIFICATION_UNREAD = "ruleflow:notifications:unread:{user_id}"
    NOTIFY_QUEUE = "ruleflow:notify:queue"
    NOTIFY_DEAD_LETTER = "ruleflow:notify:dead_letter"

    # Auxiliary
    PROCESSED = "ruleflow:processed:{event_id}"
    CONDITION_CACHE = "ruleflow:condition_cache:{rule_id}:{payload_hash}"

    @classmethod
    def rule_detail(cls, rule_id: str) -> str:
        return cls.RULE_DETAIL.format(rule_id=rule_id)

    @classmethod
    def rule_user_index(cls, user_id: str) -> str:
        return cls.RULE_USER_INDEX.format(user_id=user_id)

    @classmethod
    def rule_trigger_index(cls, user_id: str, trigger_type: str) -> str:
        return cls.RULE_TRIGGER_INDEX.format(user_id=user_id, trigger_type=trigger_type)

    @classmethod
    def log_detail(cls, log_id: str) -> str:
        return cls.LOG_DETAIL.format(log_id=log_id)

    @classmethod
    def log_rule_index(cls, rule_id: str) -> str:
        return cls.LOG_RULE_INDEX.format(rule_id=rule_id)

    @classmethod
    def log_user_index(cls, user_id: str) -> str:
        return cls.LOG_USER_INDEX.format(user_id=user_id)

    @classmethod
    def notification_detail(cls, notification_id: str) -> str:
        return cls.NOTIFICATION_DETAIL.format(notification_id=notification_id)

    @classmethod
    def notification_user_index(cls, user_id: str) -> str:
        return cls.NOTIFICATION_USER_INDEX.format(user_id=user_id)

    @classmethod
    def notification_unread(cls, user_id: str) -> str:
        return cls.NOTIFICATION_UNREAD.format(user_id=user_id)

    @classmethod
    def processed(cls, event_id: str) -> str:
        return cls.PROCESSED.format(event_id=event_id)

    @classmethod
    def condition_cache(cls, rule_id: str, payload_hash: str) -> str:
        return cls.CONDITION_CACHE.format(rule_id=rule_id, payload_hash=payload_hash)
