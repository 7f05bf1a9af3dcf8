"""Tests for trigger dispatch."""

from typing import Any

import pytest

from ruleflow.core.errors import MatchEvaluationError
from ruleflow.engine.dispatcher import Dispatcher, DispatchPolicy
from ruleflow.engine.formatter import TextOutputFormatter
from ruleflow.engine.interfaces import ConditionDecision, StepOutcome
from ruleflow.engine.recorder import ExecutionRecorder
from ruleflow.engine.runner import StepRunner
from ruleflow.models.event import TriggerEvent
from ruleflow.models.rule import ActivationMode


class StubEvaluator:
    """Deterministic evaluator: rules listed in ``matching`` match, ``failing`` raise."""

    def __init__(self, matching: set[str], failing: set[str] | None = None):
        self._matching = matching
        self._failing = failing or set()
        self.evaluated: list[str] = []

    async def evaluate(self, topic_condition: str, payload: dict[str, Any], rule_id: str | None = None):
        self.evaluated.append(rule_id)
        if rule_id in self._failing:
            raise MatchEvaluationError("LLM service error: timeout")
        matches = rule_id in self._matching
        return ConditionDecision(matches=matches, confidence=0.9 if matches else 0.1, reason="stub")


class EchoExecutor:
    async def execute(self, step, context):
        return StepOutcome(success=True, result=f"{context['rule_id']}:{step.index}")


def make_dispatcher(rule_store, log_store, evaluator, policy=DispatchPolicy.FIRST_MATCH) -> Dispatcher:
    runner = StepRunner(EchoExecutor(), TextOutputFormatter())
    recorder = ExecutionRecorder(rule_store, log_store)
    return Dispatcher(rule_store, evaluator, runner, recorder, policy)


def gmail_event(**overrides) -> TriggerEvent:
    data = {"trigger_type": "gmail_new_email", "user_id": "user_1", "payload": {"subject": "Report"}}
    data.update(overrides)
    return TriggerEvent(**data)


@pytest.mark.asyncio
async def test_first_match_runs_only_highest_priority_rule(rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("r_low", priority=5))
    await rule_store.create(make_rule("r_high", priority=10))
    evaluator = StubEvaluator(matching={"r_low", "r_high"})
    dispatcher = make_dispatcher(rule_store, log_store, evaluator)

    outcomes = await dispatcher.dispatch(gmail_event())

    assert [o.rule.id for o in outcomes] == ["r_high"]
    assert evaluator.evaluated == ["r_high"]
    high_logs, high_total = await log_store.list_by_rule("r_high")
    _, low_total = await log_store.list_by_rule("r_low")
    assert high_total == 1
    assert low_total == 0
    assert high_logs[0].trigger_slug == "gmail_new_email"
    assert (await rule_store.get("r_high")).execution_count == 1


@pytest.mark.asyncio
async def test_fan_out_runs_every_match_in_order(rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("r_a", priority=1))
    await rule_store.create(make_rule("r_b", priority=3))
    await rule_store.create(make_rule("r_c", priority=2))
    evaluator = StubEvaluator(matching={"r_a", "r_b"})
    dispatcher = make_dispatcher(rule_store, log_store, evaluator, DispatchPolicy.FAN_OUT)

    outcomes = await dispatcher.dispatch(gmail_event())

    assert [o.rule.id for o in outcomes] == ["r_b", "r_a"]
    assert evaluator.evaluated == ["r_b", "r_c", "r_a"]
    _, total = await log_store.list_by_user("user_1")
    assert total == 2


@pytest.mark.asyncio
async def test_evaluator_error_counts_as_no_match(rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("r_broken", priority=10))
    await rule_store.create(make_rule("r_ok", priority=1))
    evaluator = StubEvaluator(matching={"r_broken", "r_ok"}, failing={"r_broken"})
    dispatcher = make_dispatcher(rule_store, log_store, evaluator)

    matched = await dispatcher.match("gmail_new_email", {}, "user_1")

    assert [r.id for r in matched] == ["r_ok"]


@pytest.mark.asyncio
async def test_ineligible_rules_are_never_evaluated(rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("r_inactive", is_active=False))
    await rule_store.create(make_rule("r_manual", activation_mode=ActivationMode.MANUAL))
    await rule_store.create(make_rule("r_other_user", owner_id="user_2"))
    evaluator = StubEvaluator(matching={"r_inactive", "r_manual", "r_other_user"})
    dispatcher = make_dispatcher(rule_store, log_store, evaluator)

    outcomes = await dispatcher.dispatch(gmail_event())

    assert outcomes == []
    assert evaluator.evaluated == []


@pytest.mark.asyncio
async def test_no_match_writes_no_log(rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("r_a"))
    dispatcher = make_dispatcher(rule_store, log_store, StubEvaluator(matching=set()))

    outcomes = await dispatcher.dispatch(gmail_event())

    assert outcomes == []
    assert (await log_store.list_by_user("user_1"))[1] == 0


@pytest.mark.asyncio
async def test_candidates_expose_evaluation_order(rule_store, log_store, make_rule) -> None:
    await rule_store.create(make_rule("r_b", priority=2))
    await rule_store.create(make_rule("r_a", priority=2))
    await rule_store.create(make_rule("r_c", priority=4))
    dispatcher = make_dispatcher(rule_store, log_store, StubEvaluator(matching=set()))

    candidates = await dispatcher.candidates("user_1", "gmail_new_email")

    assert [r.id for r in candidates] == ["r_c", "r_a", "r_b"]
