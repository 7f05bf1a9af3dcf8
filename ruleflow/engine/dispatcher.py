"""Trigger dispatcher selecting which rules run for an event."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ruleflow.core.logging import get_logger
from ruleflow.engine.interfaces import ConditionEvaluator
from ruleflow.engine.recorder import ExecutionRecorder
from ruleflow.engine.runner import StepRunner
from ruleflow.models.event import TriggerEvent
from ruleflow.models.execution import ExecutionLogEntry, ExecutionResult
from ruleflow.models.rule import ExecutionRule
from ruleflow.observability.metrics import DISPATCH_MATCHES
from ruleflow.storage.rule_store import RuleStore

logger = get_logger(__name__)


class DispatchPolicy(str, Enum):
    """How many matching rules run for one trigger event."""

    FIRST_MATCH = "first_match"
    FAN_OUT = "fan_out"


@dataclass
class DispatchOutcome:
    """One rule run caused by a trigger event."""

    rule: ExecutionRule
    result: ExecutionResult
    log_entry: ExecutionLogEntry


class Dispatcher:
    """Selects and runs the rules appropriate to an incoming trigger.

    Candidates are evaluated one at a time in a deterministic order
    (priority desc, most recently updated first, then id). With the
    first-match policy evaluation stops at the first rule whose topic
    condition matches.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        evaluator: ConditionEvaluator,
        runner: StepRunner,
        recorder: ExecutionRecorder,
        policy: DispatchPolicy = DispatchPolicy.FIRST_MATCH,
    ):
        self._rule_store = rule_store
        self._evaluator = evaluator
        self._runner = runner
        self._recorder = recorder
        self._policy = policy

    @property
    def policy(self) -> DispatchPolicy:
        return self._policy

    async def candidates(self, user_id: str, trigger_type: str) -> list[ExecutionRule]:
        """Eligible rules for a trigger in evaluation order, without evaluating conditions."""
        rules = await self._rule_store.get_active_trigger_candidates(user_id, trigger_type)
        rules = [r for r in rules if r.owner_id == user_id and r.is_trigger_candidate(trigger_type)]
        rules.sort(key=ExecutionRule.dispatch_order_key)
        return rules

    async def match(
        self,
        trigger_type: str,
        payload: dict[str, Any],
        user_id: str,
    ) -> list[ExecutionRule]:
        """Select the rules that should run for a trigger.

        Args:
            trigger_type: Incoming trigger type
            payload: Trigger payload
            user_id: Owner whose rules are considered

        Returns:
            Matching rules in the order they should run; at most one with
            the first-match policy
        """
        candidates = await self.candidates(user_id, trigger_type)
        if not candidates:
            logger.debug("No candidate rules", user_id=user_id, trigger_type=trigger_type)
            return []

        selected: list[ExecutionRule] = []
        for rule in candidates:
            try:
                decision = await self._evaluator.evaluate(rule.topic_condition, payload, rule_id=rule.id)
            except Exception as e:
                logger.warning(
                    "Condition evaluation failed, treating as no match",
                    rule_id=rule.id,
                    trigger_type=trigger_type,
                    error=str(e),
                )
                continue

            if not decision.matches:
                logger.debug("Rule did not match", rule_id=rule.id, reason=decision.reason)
                continue

            logger.info(
                "Rule matched",
                rule_id=rule.id,
                priority=rule.priority,
                confidence=decision.confidence,
            )
            selected.append(rule)
            if self._policy == DispatchPolicy.FIRST_MATCH:
                break

        DISPATCH_MATCHES.labels(policy=self._policy.value).inc(len(selected))
        return selected

    async def dispatch(self, event: TriggerEvent) -> list[DispatchOutcome]:
        """Match an event and run every selected rule in order.

        Raises:
            StorageError: If rules could not be loaded or a run not recorded
        """
        rules = await self.match(event.trigger_type, event.payload, event.user_id)

        outcomes = []
        for rule in rules:
            result = await self._runner.run(rule, event.trigger_type, event.payload)
            entry = await self._recorder.record(result, rule, event.trigger_type)
            outcomes.append(DispatchOutcome(rule=rule, result=result, log_entry=entry))
        return outcomes
