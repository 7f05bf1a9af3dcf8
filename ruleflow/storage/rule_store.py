"""Rule storage operations."""

from datetime import datetime
from typing import Any, Callable

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import WatchError

from ruleflow.core.errors import StorageError
from ruleflow.core.logging import get_logger
from ruleflow.models.rule import ActivationMode, ExecutionRule, as_utc, utc_now
from ruleflow.storage.redis_client import (
    RedisKeys,
    get_redis,
    storage_errors,
    to_millis,
)

logger = get_logger(__name__)

# Mutation callback: returns the new rule, or None to abort without writing
RuleMutation = Callable[[ExecutionRule], ExecutionRule | None]


class RuleStore:
    """Rule storage operations using Redis.

    Every rule is a hash holding its JSON definition plus the fields that
    conditional writes compare against. Per-user, per-trigger and schedule
    indexes are kept in sets and a sorted set.
    """

    MUTATION_ATTEMPTS = 10

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def create(self, rule: ExecutionRule) -> ExecutionRule:
        """Create a new rule.

        Args:
            rule: Rule to create

        Returns:
            Created rule

        Raises:
            RuleValidationError: If the rule has no steps or no condition
        """
        rule.validate_definition()

        async with storage_errors("rule.create"):
            async with self.redis.pipeline(transaction=True) as pipe:
                self._queue_write(pipe, None, rule)
                pipe.sadd(RedisKeys.rule_user_index(rule.owner_id), rule.id)
                await pipe.execute()

        logger.info("Rule created", rule_id=rule.id, user_id=rule.owner_id)
        return rule

    async def get(self, rule_id: str) -> ExecutionRule | None:
        """Get a rule by ID.

        Args:
            rule_id: Rule ID

        Returns:
            Rule if found, None otherwise
        """
        async with storage_errors("rule.get"):
            data = await self.redis.hget(RedisKeys.rule_detail(rule_id), "config")
        if not data:
            return None
        return ExecutionRule.model_validate_json(data)

    async def get_by_id_and_user(self, rule_id: str, user_id: str) -> ExecutionRule | None:
        """Get a rule only if it belongs to ``user_id``."""
        rule = await self.get(rule_id)
        if rule is None or rule.owner_id != user_id:
            return None
        return rule

    async def update(
        self,
        rule_id: str,
        changes: dict[str, Any],
        now: datetime | None = None,
    ) -> ExecutionRule | None:
        """Apply a partial update to a rule.

        Args:
            rule_id: Rule ID to update
            changes: Fields to change; absent fields are left untouched
            now: Update time (defaults to the current time)

        Returns:
            Updated rule if found, None otherwise

        Raises:
            RuleValidationError: If the merged rule is malformed
        """
        when = now or utc_now()
        async with storage_errors("rule.update"):
            updated = await self._mutate(
                rule_id,
                lambda existing: existing.with_changes(changes, when),
            )
        if updated:
            logger.info("Rule updated", rule_id=rule_id, fields=sorted(changes))
        return updated

    async def set_active(self, rule_id: str, is_active: bool) -> ExecutionRule | None:
        """Activate or deactivate a rule."""
        return await self.update(rule_id, {"is_active": is_active})

    async def delete(self, rule_id: str) -> bool:
        """Delete a rule.

        Execution logs that reference the rule are kept.

        Args:
            rule_id: Rule ID to delete

        Returns:
            True if deleted, False if not found
        """
        existing = await self.get(rule_id)
        if not existing:
            return False

        async with storage_errors("rule.delete"):
            async with self.redis.pipeline(transaction=True) as pipe:
                for trigger_type in existing.accepted_triggers:
                    pipe.srem(RedisKeys.rule_trigger_index(existing.owner_id, trigger_type), rule_id)
                pipe.srem(RedisKeys.rule_user_index(existing.owner_id), rule_id)
                pipe.zrem(RedisKeys.RULE_SCHEDULE, rule_id)
                pipe.delete(RedisKeys.rule_detail(rule_id))
                await pipe.execute()

        logger.info("Rule deleted", rule_id=rule_id, user_id=existing.owner_id)
        return True

    async def list_by_user(self, user_id: str) -> list[ExecutionRule]:
        """List a user's rules, highest priority and most recently updated first."""
        async with storage_errors("rule.list_by_user"):
            rule_ids = await self.redis.smembers(RedisKeys.rule_user_index(user_id))
        return sorted(await self._load_many(rule_ids), key=ExecutionRule.dispatch_order_key)

    async def list_manual(self, user_id: str) -> list[ExecutionRule]:
        """List active rules the user may invoke manually (priority desc, name asc)."""
        rules = [
            rule for rule in await self.list_by_user(user_id)
            if rule.is_active and rule.activation_mode.allows_manual()
        ]
        rules.sort(key=lambda r: (-r.priority, r.name))
        return rules

    async def has_active_rules(self, user_id: str) -> bool:
        """Check whether a user has at least one active rule."""
        return any(rule.is_active for rule in await self.list_by_user(user_id))

    async def get_active_trigger_candidates(
        self,
        user_id: str,
        trigger_type: str,
    ) -> list[ExecutionRule]:
        """List rules eligible for a trigger event.

        Args:
            user_id: Rule owner
            trigger_type: Incoming trigger type

        Returns:
            Active rules of ``user_id`` in trigger or all mode that accept
            ``trigger_type``, ordered priority desc then most recently updated
        """
        async with storage_errors("rule.trigger_candidates"):
            rule_ids = await self.redis.smembers(RedisKeys.rule_trigger_index(user_id, trigger_type))
        rules = [
            rule for rule in await self._load_many(rule_ids)
            if rule.owner_id == user_id and rule.is_trigger_candidate(trigger_type)
        ]
        rules.sort(key=ExecutionRule.dispatch_order_key)
        return rules

    async def get_due(self, now: datetime) -> list[ExecutionRule]:
        """List scheduled rules whose next run is at or before ``now``.

        Returns:
            Due rules ordered by next run, oldest first
        """
        async with storage_errors("rule.get_due"):
            rule_ids = await self.redis.zrangebyscore(RedisKeys.RULE_SCHEDULE, "-inf", to_millis(now))
        rules = [rule for rule in await self._load_many(rule_ids) if rule.is_due(now)]
        rules.sort(key=lambda r: (r.schedule_next_run, r.id))
        return rules

    async def claim_scheduled_run(
        self,
        rule_id: str,
        expected_next_run: datetime,
        new_next_run: datetime,
        now: datetime | None = None,
    ) -> ExecutionRule | None:
        """Atomically advance a due rule's schedule.

        The write only happens if the stored rule is still due and its next
        run still equals ``expected_next_run``. Of several concurrent callers
        with the same expectation exactly one succeeds.

        Args:
            rule_id: Rule ID
            expected_next_run: Next run value read before claiming
            new_next_run: Next run to store on success
            now: Claim time stored as the last run

        Returns:
            The rule as stored at claim time if this caller won, None otherwise
        """
        claimed_at = as_utc(now) if now else utc_now()
        expected_ms = to_millis(expected_next_run)

        def advance(existing: ExecutionRule) -> ExecutionRule | None:
            if not existing.is_due(claimed_at) or to_millis(existing.schedule_next_run) != expected_ms:
                return None
            return existing.model_copy(
                update={"schedule_next_run": new_next_run, "schedule_last_run": claimed_at}
            )

        async with storage_errors("rule.claim"):
            try:
                return await self._mutate(rule_id, advance, attempts=1)
            except WatchError:
                return None

    async def release_scheduled_run(
        self,
        rule_id: str,
        claimed_next_run: datetime,
        previous_next_run: datetime,
        previous_last_run: datetime | None,
    ) -> bool:
        """Undo a claim whose run could not be recorded.

        Only rolls back if nobody advanced the schedule since the claim.

        Returns:
            True if the schedule was restored
        """
        claimed_ms = to_millis(claimed_next_run)

        def restore(existing: ExecutionRule) -> ExecutionRule | None:
            if existing.schedule_next_run is None or to_millis(existing.schedule_next_run) != claimed_ms:
                return None
            return existing.model_copy(
                update={
                    "schedule_next_run": previous_next_run,
                    "schedule_last_run": previous_last_run,
                }
            )

        async with storage_errors("rule.release"):
            restored = await self._mutate(rule_id, restore)
        return restored is not None

    async def increment_execution_count(self, rule_id: str, at: datetime | None = None) -> bool:
        """Increment a rule's execution count and set its last execution time.

        Returns:
            True if the rule still exists
        """
        executed_at = at or utc_now()

        def bump(existing: ExecutionRule) -> ExecutionRule:
            return existing.model_copy(
                update={
                    "execution_count": existing.execution_count + 1,
                    "last_executed_at": executed_at,
                }
            )

        async with storage_errors("rule.increment"):
            updated = await self._mutate(rule_id, bump)
        return updated is not None

    async def _mutate(
        self,
        rule_id: str,
        mutate: RuleMutation,
        attempts: int | None = None,
    ) -> ExecutionRule | None:
        """Optimistic read-modify-write of one rule under WATCH.

        Args:
            rule_id: Rule ID
            mutate: Builds the new rule from the current one, or returns None
                to leave it unchanged
            attempts: How many times to retry after a concurrent write

        Returns:
            The written rule, or None if the rule is missing or ``mutate``
            declined

        Raises:
            WatchError: If concurrent writers won every attempt
        """
        key = RedisKeys.rule_detail(rule_id)
        attempts = attempts or self.MUTATION_ATTEMPTS

        for attempt in range(1, attempts + 1):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hget(key, "config")
                    if not raw:
                        await pipe.unwatch()
                        return None

                    existing = ExecutionRule.model_validate_json(raw)
                    updated = mutate(existing)
                    if updated is None:
                        await pipe.unwatch()
                        return None

                    pipe.multi()
                    self._queue_write(pipe, existing, updated)
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.debug("Concurrent rule write", rule_id=rule_id, attempt=attempt)
                    if attempt == attempts:
                        raise
        raise StorageError(f"Rule {rule_id} mutation did not run")

    @staticmethod
    def _queue_write(pipe: Pipeline, old: ExecutionRule | None, new: ExecutionRule) -> None:
        """Queue the hash write and index maintenance for ``new``."""
        mapping = {
            "config": new.model_dump_json(),
            "owner_id": new.owner_id,
            "is_active": str(new.is_active).lower(),
            "updated_at": str(to_millis(new.updated_at)),
            "schedule_next_run": (
                str(to_millis(new.schedule_next_run)) if new.schedule_next_run else ""
            ),
        }
        pipe.hset(RedisKeys.rule_detail(new.id), mapping=mapping)

        old_triggers = set(old.accepted_triggers) if old else set()
        new_triggers = set(new.accepted_triggers)
        for removed in old_triggers - new_triggers:
            pipe.srem(RedisKeys.rule_trigger_index(new.owner_id, removed), new.id)
        for added in new_triggers - old_triggers:
            pipe.sadd(RedisKeys.rule_trigger_index(new.owner_id, added), new.id)

        if (
            new.schedule_enabled
            and new.schedule_next_run is not None
            and new.activation_mode in (ActivationMode.SCHEDULED, ActivationMode.ALL)
        ):
            pipe.zadd(RedisKeys.RULE_SCHEDULE, {new.id: to_millis(new.schedule_next_run)})
        else:
            pipe.zrem(RedisKeys.RULE_SCHEDULE, new.id)

    async def _load_many(self, rule_ids: set[str] | list[str]) -> list[ExecutionRule]:
        """Load rules by ID, skipping any deleted in the meantime."""
        rules = []
        for rule_id in rule_ids:
            rule = await self.get(rule_id)
            if rule:
                rules.append(rule)
        return rules
