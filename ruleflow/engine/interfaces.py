"""Collaborator interfaces consumed by the engine."""

from dataclasses import dataclass
from typing import Any, Protocol

from ruleflow.models.execution import StepRecord
from ruleflow.models.notification import NotificationKind
from ruleflow.models.rule import ExecutionStep, OutputConfig


@dataclass
class ConditionDecision:
    """Result of evaluating a topic condition against a payload."""

    matches: bool
    confidence: float | None = None
    reason: str = ""


@dataclass
class StepOutcome:
    """Result of executing one step."""

    success: bool
    result: Any = None
    error: str | None = None


class ConditionEvaluator(Protocol):
    """Decides whether a trigger payload satisfies a rule's topic condition."""

    async def evaluate(
        self,
        topic_condition: str,
        payload: dict[str, Any],
        rule_id: str | None = None,
    ) -> ConditionDecision:
        """Raise ``MatchEvaluationError`` when no decision can be made."""
        ...


class StepExecutor(Protocol):
    """Executes one instruction or tool-call step."""

    async def execute(self, step: ExecutionStep, context: dict[str, Any]) -> StepOutcome:
        ...


class OutputFormatter(Protocol):
    """Renders successful step records into the run's output text."""

    def format(self, step_records: list[StepRecord], output_config: OutputConfig) -> str:
        ...


class NotificationEmitter(Protocol):
    """Fire-and-forget notification sink called after a run completes."""

    async def emit(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        ...
