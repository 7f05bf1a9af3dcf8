"""Tests for execution history storage and statistics."""

from datetime import datetime, timedelta, timezone

import pytest

from ruleflow.engine.stats import StatsAggregator
from ruleflow.models.execution import ExecutionLogEntry, ExecutionStats, ExecutionStatus, StepRecord
from ruleflow.storage.redis_client import RedisKeys

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_entry(
    log_id: str,
    duration_ms: int = 100,
    status: ExecutionStatus = ExecutionStatus.SUCCESS,
    rule_id: str = "rule_a",
    user_id: str = "user_1",
    created_at: datetime = NOW,
) -> ExecutionLogEntry:
    return ExecutionLogEntry(
        id=log_id,
        rule_id=rule_id,
        rule_name=f"Rule {rule_id}",
        user_id=user_id,
        trigger_slug="gmail_new_email",
        status=status,
        steps_json=[StepRecord(step_index=0, type="instruction", success=True, result="ok")],
        output_text="ok",
        duration_ms=duration_ms,
        created_at=created_at,
    )


def test_stats_of_empty_history_are_zero() -> None:
    assert StatsAggregator().fold([]) == ExecutionStats(total_runs=0, success_rate=0, avg_duration_ms=0)


def test_stats_count_only_success_as_successful() -> None:
    stats = StatsAggregator().fold(
        [
            make_entry("l1", status=ExecutionStatus.SUCCESS),
            make_entry("l2", status=ExecutionStatus.PARTIAL),
            make_entry("l3", status=ExecutionStatus.FAILURE),
            make_entry("l4", status=ExecutionStatus.SUCCESS),
        ]
    )

    assert stats.total_runs == 4
    assert stats.success_rate == 50


def test_stats_by_rule_groups_entries() -> None:
    by_rule = StatsAggregator().by_rule(
        [make_entry("l1", rule_id="a"), make_entry("l2", rule_id="b"), make_entry("l3", rule_id="a")]
    )

    assert by_rule["a"].total_runs == 2
    assert by_rule["b"].total_runs == 1


@pytest.mark.asyncio
async def test_stats_for_rule_with_no_runs(log_store) -> None:
    stats = await log_store.stats_for(rule_id="rule_without_runs")

    assert stats.total_runs == 0
    assert stats.success_rate == 0
    assert stats.avg_duration_ms == 0


@pytest.mark.asyncio
async def test_stats_for_three_successful_runs(log_store) -> None:
    for index, duration in enumerate([100, 200, 300]):
        await log_store.create(make_entry(f"log_{index}", duration_ms=duration))

    stats = await log_store.stats_for(rule_id="rule_a")

    assert stats == ExecutionStats(total_runs=3, success_rate=100, avg_duration_ms=200)
    assert (await log_store.stats_for(user_id="user_1")).total_runs == 3


@pytest.mark.asyncio
async def test_stats_for_needs_exactly_one_scope(log_store) -> None:
    with pytest.raises(ValueError):
        await log_store.stats_for()
    with pytest.raises(ValueError):
        await log_store.stats_for(rule_id="rule_a", user_id="user_1")


@pytest.mark.asyncio
async def test_list_by_rule_pages_newest_first(log_store) -> None:
    for minute in range(5):
        await log_store.create(make_entry(f"log_{minute}", created_at=NOW + timedelta(minutes=minute)))
    await log_store.create(make_entry("log_other", rule_id="rule_b"))

    first_page, total = await log_store.list_by_rule("rule_a", limit=2, offset=0)
    second_page, _ = await log_store.list_by_rule("rule_a", limit=2, offset=2)

    assert total == 5
    assert [e.id for e in first_page] == ["log_4", "log_3"]
    assert [e.id for e in second_page] == ["log_2", "log_1"]


@pytest.mark.asyncio
async def test_list_by_user_and_recent(log_store) -> None:
    await log_store.create(make_entry("log_a", rule_id="rule_a", created_at=NOW))
    await log_store.create(make_entry("log_b", rule_id="rule_b", created_at=NOW + timedelta(seconds=1)))
    await log_store.create(make_entry("log_c", user_id="user_2"))

    entries, total = await log_store.list_by_user("user_1")
    recent = await log_store.get_recent("user_1", limit=1)

    assert total == 2
    assert [e.id for e in entries] == ["log_b", "log_a"]
    assert [e.id for e in recent] == ["log_b"]


@pytest.mark.asyncio
async def test_entry_round_trips_with_denormalized_rule_name(log_store) -> None:
    entry = make_entry("log_x")
    await log_store.create(entry)

    loaded = await log_store.get("log_x")

    assert loaded == entry
    assert loaded.rule_name == "Rule rule_a"
    assert loaded.steps_json[0].result == "ok"


@pytest.mark.asyncio
async def test_delete_older_than_sweeps_expired_entries(log_store, redis) -> None:
    old = datetime.now(timezone.utc) - timedelta(days=40)
    fresh = datetime.now(timezone.utc) - timedelta(days=1)
    await log_store.create(make_entry("log_old", created_at=old))
    await log_store.create(make_entry("log_fresh", created_at=fresh))

    deleted = await log_store.delete_older_than(30)

    assert deleted == 1
    assert await log_store.get("log_old") is None
    assert await log_store.get("log_fresh") is not None
    entries, total = await log_store.list_by_rule("rule_a")
    assert total == 1
    assert await redis.zcard(RedisKeys.LOG_ALL) == 1
