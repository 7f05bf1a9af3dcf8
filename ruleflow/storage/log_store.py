"""Execution log storage operations."""

import uuid
from datetime import timedelta

from redis.asyncio import Redis

from ruleflow.core.logging import get_logger
from ruleflow.engine.stats import StatsAggregator
from ruleflow.models.execution import ExecutionLogEntry, ExecutionStats
from ruleflow.models.rule import utc_now
from ruleflow.storage.redis_client import RedisKeys, get_redis, storage_errors, to_millis

logger = get_logger(__name__)


def generate_log_id() -> str:
    return f"log_{uuid.uuid4().hex[:16]}"


class LogStore:
    """Append-mostly execution history in Redis.

    Entries are JSON strings indexed by rule, by user and globally in sorted
    sets scored by creation time.
    """

    def __init__(self, redis: Redis | None = None, aggregator: StatsAggregator | None = None):
        self._redis = redis
        self._aggregator = aggregator or StatsAggregator()

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def create(self, entry: ExecutionLogEntry) -> str:
        """Persist a log entry.

        Args:
            entry: Entry to store; an empty ``id`` gets a generated one

        Returns:
            Stored entry ID
        """
        if not entry.id:
            entry.id = generate_log_id()
        score = to_millis(entry.created_at)

        async with storage_errors("log.create"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(RedisKeys.log_detail(entry.id), entry.model_dump_json())
                pipe.zadd(RedisKeys.log_rule_index(entry.rule_id), {entry.id: score})
                pipe.zadd(RedisKeys.log_user_index(entry.user_id), {entry.id: score})
                pipe.zadd(RedisKeys.LOG_ALL, {entry.id: score})
                await pipe.execute()

        return entry.id

    async def get(self, log_id: str) -> ExecutionLogEntry | None:
        """Get a log entry by ID."""
        async with storage_errors("log.get"):
            data = await self.redis.get(RedisKeys.log_detail(log_id))
        if not data:
            return None
        return ExecutionLogEntry.model_validate_json(data)

    async def list_by_rule(
        self,
        rule_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ExecutionLogEntry], int]:
        """List a rule's log entries, newest first.

        Returns:
            Tuple of (entries, total count)
        """
        return await self._page(RedisKeys.log_rule_index(rule_id), limit, offset)

    async def list_by_user(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ExecutionLogEntry], int]:
        """List a user's log entries, newest first.

        Returns:
            Tuple of (entries, total count)
        """
        return await self._page(RedisKeys.log_user_index(user_id), limit, offset)

    async def get_recent(self, user_id: str, limit: int = 10) -> list[ExecutionLogEntry]:
        """Most recent log entries of a user."""
        entries, _ = await self.list_by_user(user_id, limit=limit)
        return entries

    async def stats_for(
        self,
        rule_id: str | None = None,
        user_id: str | None = None,
    ) -> ExecutionStats:
        """Fold all history in scope into aggregate statistics.

        Exactly one of ``rule_id`` or ``user_id`` must be given.
        """
        if (rule_id is None) == (user_id is None):
            raise ValueError("stats_for needs exactly one of rule_id or user_id")

        index = RedisKeys.log_rule_index(rule_id) if rule_id else RedisKeys.log_user_index(user_id)
        async with storage_errors("log.stats"):
            log_ids = await self.redis.zrange(index, 0, -1)
        entries = await self._load_many(log_ids)
        return self._aggregator.fold(entries)

    async def delete_older_than(self, days: int) -> int:
        """Delete entries created more than ``days`` days ago.

        Returns:
            Number of entries deleted
        """
        cutoff = to_millis(utc_now() - timedelta(days=days))

        async with storage_errors("log.retention"):
            log_ids = await self.redis.zrangebyscore(RedisKeys.LOG_ALL, "-inf", f"({cutoff}")
            entries = await self._load_many(log_ids)

            async with self.redis.pipeline(transaction=True) as pipe:
                for entry in entries:
                    pipe.zrem(RedisKeys.log_rule_index(entry.rule_id), entry.id)
                    pipe.zrem(RedisKeys.log_user_index(entry.user_id), entry.id)
                for log_id in log_ids:
                    pipe.delete(RedisKeys.log_detail(log_id))
                    pipe.zrem(RedisKeys.LOG_ALL, log_id)
                await pipe.execute()

        if log_ids:
            logger.info("Execution logs swept", deleted=len(log_ids), older_than_days=days)
        return len(log_ids)

    async def _page(
        self,
        index: str,
        limit: int,
        offset: int,
    ) -> tuple[list[ExecutionLogEntry], int]:
        async with storage_errors("log.list"):
            total = await self.redis.zcard(index)
            log_ids = await self.redis.zrevrange(index, offset, offset + limit - 1) if limit > 0 else []
        return await self._load_many(log_ids), total

    async def _load_many(self, log_ids: list[str]) -> list[ExecutionLogEntry]:
        if not log_ids:
            return []
        async with storage_errors("log.load"):
            raw = await self.redis.mget([RedisKeys.log_detail(log_id) for log_id in log_ids])
        return [ExecutionLogEntry.model_validate_json(item) for item in raw if item]
