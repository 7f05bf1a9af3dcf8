"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from ruleflow.models.rule import (
    ActivationMode,
    ExecutionRule,
    InstructionStep,
    ScheduleInterval,
    ToolCall,
    ToolCallStep,
)
from ruleflow.storage.log_store import LogStore
from ruleflow.storage.rule_store import RuleStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def redis() -> AsyncIterator[FakeAsyncRedis]:
    """In-memory Redis shared by every store in a test."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def rule_store(redis: FakeAsyncRedis) -> RuleStore:
    return RuleStore(redis)


@pytest.fixture
def log_store(redis: FakeAsyncRedis) -> LogStore:
    return LogStore(redis)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_rule() -> Callable[..., ExecutionRule]:
    """Factory for valid rules; keyword arguments override any field."""

    def _make(rule_id: str = "rule_a", **overrides: Any) -> ExecutionRule:
        data: dict[str, Any] = {
            "id": rule_id,
            "owner_id": "user_1",
            "name": f"Rule {rule_id}",
            "accepted_triggers": ["gmail_new_email"],
            "topic_condition": "email from my manager",
            "execution_steps": [
                InstructionStep(index=0, content="Summarize the email"),
                ToolCallStep(
                    index=1,
                    content=ToolCall(tool="SLACK_SEND_MESSAGE", arguments={"channel": "#inbox"}),
                ),
            ],
            "created_at": NOW,
            "updated_at": NOW,
        }
        data.update(overrides)
        return ExecutionRule(**data)

    return _make


@pytest.fixture
def make_scheduled_rule(make_rule: Callable[..., ExecutionRule]) -> Callable[..., ExecutionRule]:
    """Factory for hourly scheduled rules due at ``NOW``."""

    def _make(rule_id: str = "rule_sched", **overrides: Any) -> ExecutionRule:
        data: dict[str, Any] = {
            "activation_mode": ActivationMode.SCHEDULED,
            "accepted_triggers": [],
            "schedule_enabled": True,
            "schedule_interval": ScheduleInterval.HOURLY,
            "schedule_next_run": NOW,
        }
        data.update(overrides)
        return make_rule(rule_id, **data)

    return _make


@pytest.fixture
def sample_trigger_data() -> dict:
    """Sample trigger event as published on the queue."""
    return {
        "event_id": "evt_test_001",
        "trigger_type": "gmail_new_email",
        "user_id": "user_1",
        "timestamp": "2026-03-02T09:00:00Z",
        "payload": {
            "from": "manager@example.com",
            "subject": "Quarterly report",
            "snippet": "Please review the attached report.",
        },
    }
