"""Tests for the automation service entry points."""

from typing import Any

import pytest

from ruleflow.api.routes import automations as automations_api
from ruleflow.core.errors import ManualInvocationError
from ruleflow.engine.interfaces import ConditionDecision, StepOutcome
from ruleflow.engine.service import AutomationService
from ruleflow.models.event import TriggerEvent
from ruleflow.models.execution import ConversationMessage
from ruleflow.models.notification import NotificationKind
from ruleflow.models.rule import ActivationMode
from ruleflow.schemas.execution import TickRequest, TriggerRequest
from ruleflow.storage.auxiliary import IdempotencyStore


class AlwaysMatches:
    async def evaluate(self, topic_condition: str, payload: dict[str, Any], rule_id: str | None = None):
        return ConditionDecision(matches=True, confidence=1.0, reason="stub")


class RecordingExecutor:
    def __init__(self):
        self.contexts: list[dict[str, Any]] = []

    async def execute(self, step, context):
        self.contexts.append(context)
        return StepOutcome(success=True, result=f"step {step.index}")


class RecordingEmitter:
    def __init__(self, fail: bool = False):
        self._fail = fail
        self.emitted: list[tuple[NotificationKind, dict[str, Any]]] = []

    async def emit(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        if self._fail:
            raise ConnectionError("queue down")
        self.emitted.append((kind, payload))


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def service(rule_store, log_store, executor, emitter) -> AutomationService:
    return AutomationService(
        rule_store=rule_store,
        log_store=log_store,
        evaluator=AlwaysMatches(),
        executor=executor,
        emitter=emitter,
    )


@pytest.mark.asyncio
async def test_manual_invocation_of_trigger_only_rule_is_rejected(service, rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("rule_t", activation_mode=ActivationMode.TRIGGER))

    with pytest.raises(ManualInvocationError) as exc_info:
        await service.invoke_manual("user_1", "rule_t", "context")

    assert exc_info.value.reason == ManualInvocationError.MODE_NOT_ALLOWED
    assert exc_info.value.message == "Rule does not support manual invocation"
    assert (await log_store.list_by_rule("rule_t"))[1] == 0
    assert (await rule_store.get("rule_t")).execution_count == 0


@pytest.mark.asyncio
async def test_manual_invocation_of_unknown_or_foreign_rule(service, rule_store, make_rule) -> None:
    await rule_store.create(make_rule("rule_m", owner_id="user_2", activation_mode=ActivationMode.MANUAL))

    with pytest.raises(ManualInvocationError) as missing:
        await service.invoke_manual("user_1", "nope")
    with pytest.raises(ManualInvocationError) as foreign:
        await service.invoke_manual("user_1", "rule_m")

    assert missing.value.reason == ManualInvocationError.NOT_FOUND
    assert foreign.value.reason == ManualInvocationError.NOT_FOUND


@pytest.mark.asyncio
async def test_manual_invocation_of_inactive_rule(service, rule_store, make_rule) -> None:
    await rule_store.create(make_rule("rule_m", activation_mode=ActivationMode.ALL, is_active=False))

    with pytest.raises(ManualInvocationError) as exc_info:
        await service.invoke_manual("user_1", "rule_m")

    assert exc_info.value.reason == ManualInvocationError.INACTIVE


@pytest.mark.asyncio
async def test_manual_invocation_runs_and_records(service, rule_store, log_store, executor, emitter, make_rule) -> None:
    await rule_store.create(make_rule("rule_m", name="Weekly digest", activation_mode=ActivationMode.MANUAL))
    history = [ConversationMessage(role="user", content="Focus on sales")]

    result = await service.invoke_manual("user_1", "rule_m", "Q3 numbers", history)

    assert result.success is True
    assert result.rule_id == "rule_m"
    assert result.rule_name == "Weekly digest"
    assert result.output == "step 1"
    assert result.error is None
    assert executor.contexts[0]["context"] == "Q3 numbers"
    assert executor.contexts[0]["conversation_history"][0]["content"] == "Focus on sales"

    entries, total = await log_store.list_by_rule("rule_m")
    assert total == 1
    assert entries[0].trigger_slug == "manual"
    assert entries[0].created_at == result.executed_at
    assert (await rule_store.get("rule_m")).execution_count == 1
    assert emitter.emitted[0][0] == NotificationKind.EXECUTION_SUCCESS
    assert emitter.emitted[0][1]["log_id"] == entries[0].id


@pytest.mark.asyncio
async def test_handle_trigger_dispatches_and_records(service, rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("rule_t"))
    event = TriggerEvent(trigger_type="gmail_new_email", user_id="user_1", payload={"subject": "Hi"})

    outcomes = await service.handle_trigger(event)

    assert [o.rule.id for o in outcomes] == ["rule_t"]
    assert outcomes[0].log_entry.rule_name == "Rule rule_t"


@pytest.mark.asyncio
async def test_log_keeps_rule_name_after_rename_and_delete(service, rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("rule_m", name="Original", activation_mode=ActivationMode.MANUAL))
    await service.invoke_manual("user_1", "rule_m")

    await rule_store.update("rule_m", {"name": "Renamed"})
    await rule_store.delete("rule_m")

    entries, _ = await log_store.list_by_user("user_1")
    assert entries[0].rule_name == "Original"


@pytest.mark.asyncio
async def test_emitter_failure_does_not_fail_the_run(rule_store, log_store, executor, make_rule) -> None:
    service = AutomationService(
        rule_store=rule_store,
        log_store=log_store,
        evaluator=AlwaysMatches(),
        executor=executor,
        emitter=RecordingEmitter(fail=True),
    )
    await rule_store.create(make_rule("rule_m", activation_mode=ActivationMode.MANUAL))

    result = await service.invoke_manual("user_1", "rule_m")

    assert result.success is True
    assert (await log_store.list_by_rule("rule_m"))[1] == 1


@pytest.mark.asyncio
async def test_tick_runs_due_rules(service, rule_store, make_scheduled_rule, now) -> None:
    await rule_store.create(make_scheduled_rule("rule_s"))

    report = await service.tick(now)

    assert report.claimed == ["rule_s"]


@pytest.mark.asyncio
async def test_submitted_trigger_runs_once_per_event_id(service, redis, rule_store, make_rule) -> None:
    await rule_store.create(make_rule("rule_high", priority=10))
    await rule_store.create(make_rule("rule_low", priority=5))
    idempotency = IdempotencyStore(redis)
    request = TriggerRequest(event_id="evt_1", trigger_type="gmail_new_email", payload={"subject": "Hi"})

    first = await automations_api.submit_trigger(
        data=request,
        service=service,
        idempotency=idempotency,
        user_id="user_1",
    )
    second = await automations_api.submit_trigger(
        data=request,
        service=service,
        idempotency=idempotency,
        user_id="user_1",
    )

    assert [run.rule_id for run in first.data.runs] == ["rule_high"]
    assert first.data.runs[0].status == "success"
    assert second.data.duplicate is True
    assert second.data.runs == []
    assert (await rule_store.get("rule_high")).execution_count == 1
    assert (await rule_store.get("rule_low")).execution_count == 0


@pytest.mark.asyncio
async def test_tick_route_reports_claims(service, rule_store, make_scheduled_rule, now) -> None:
    await rule_store.create(make_scheduled_rule("rule_s"))

    response = await automations_api.run_scheduler_tick(service=service, data=TickRequest(now=now))

    assert response.data.due == 1
    assert response.data.claimed == ["rule_s"]
