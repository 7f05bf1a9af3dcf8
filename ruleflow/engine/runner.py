"""Step runner executing a rule's ordered steps."""

import asyncio
import time
from typing import Any

from ruleflow.core.errors import RunTimeoutError, StepExecutionError
from ruleflow.core.logging import get_logger
from ruleflow.engine.interfaces import OutputFormatter, StepExecutor
from ruleflow.models.execution import (
    ConversationMessage,
    ExecutionErrorKind,
    ExecutionResult,
    ExecutionStatus,
    StepRecord,
)
from ruleflow.models.rule import ExecutionRule, ExecutionStep, StepFailurePolicy
from ruleflow.observability.metrics import STEPS_EXECUTED

logger = get_logger(__name__)


class StepRunner:
    """Runs a snapshot of a rule's steps and builds one execution result.

    Steps run strictly one after another because step *i+1* may use the
    output of step *i*. Step failures never escape :meth:`run`; they are
    captured into step records and drive the final status.
    """

    def __init__(
        self,
        executor: StepExecutor,
        formatter: OutputFormatter,
        failure_policy: StepFailurePolicy = StepFailurePolicy.ABORT,
        timeout_seconds: float | None = None,
    ):
        """Initialize runner.

        Args:
            executor: Executes individual steps
            formatter: Renders the final output text
            failure_policy: Deployment default, overridable per rule
            timeout_seconds: Overall deadline for one run (None disables it)
        """
        self._executor = executor
        self._formatter = formatter
        self._failure_policy = failure_policy
        self._timeout = timeout_seconds

    async def run(
        self,
        rule: ExecutionRule,
        trigger_slug: str,
        context_payload: dict[str, Any] | None = None,
        conversation_history: list[ConversationMessage] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Execute the rule's steps.

        Args:
            rule: Rule to run; its steps are copied before the first dispatch
            trigger_slug: Trigger type, "scheduled" or "manual"
            context_payload: Trigger payload or manual context
            conversation_history: Prior conversation threaded into the context
            cancel_event: When set, no further steps are dispatched

        Returns:
            Execution result with status success, failure or partial
        """
        snapshot = [step.model_copy(deep=True) for step in sorted(rule.execution_steps, key=lambda s: s.index)]
        output_config = rule.output_config.model_copy(deep=True)
        policy = rule.failure_policy or self._failure_policy

        context: dict[str, Any] = {
            **(context_payload or {}),
            "rule_id": rule.id,
            "user_id": rule.owner_id,
            "rule_name": rule.name,
            "trigger_slug": trigger_slug,
            "previous_results": [],
        }
        if conversation_history:
            context["conversation_history"] = [m.model_dump() for m in conversation_history]

        records: list[StepRecord] = []
        start_time = time.perf_counter()

        if not snapshot:
            return self._finish(
                ExecutionStatus.FAILURE,
                records,
                start_time,
                error_text="Rule has no execution steps",
                error_kind=ExecutionErrorKind.EMPTY,
            )

        logger.debug(
            "Run started",
            rule_id=rule.id,
            trigger_slug=trigger_slug,
            steps=len(snapshot),
            policy=policy.value,
        )

        try:
            async with asyncio.timeout(self._timeout):
                aborted = await self._run_steps(snapshot, context, records, policy, cancel_event)
        except TimeoutError:
            error = RunTimeoutError(f"Run exceeded deadline of {self._timeout}s")
            logger.warning("Run timed out", rule_id=rule.id, completed_steps=len(records))
            next_index = len(records)
            if next_index < len(snapshot):
                step = snapshot[next_index]
                records.append(
                    StepRecord(step_index=step.index, type=step.kind, success=False, error=error.message)
                )
            return self._finish(
                ExecutionStatus.FAILURE,
                records,
                start_time,
                error_text=error.message,
                error_kind=ExecutionErrorKind.TIMEOUT,
            )

        if aborted == ExecutionErrorKind.CANCELLED:
            return self._finish(
                ExecutionStatus.FAILURE,
                records,
                start_time,
                error_text="Run cancelled",
                error_kind=ExecutionErrorKind.CANCELLED,
            )

        status = self._resolve_status(records, len(snapshot))
        failures = [r for r in records if not r.success]
        error_text = None
        if failures:
            error_text = "; ".join(f"Step {r.step_index} failed: {r.error}" for r in failures)

        output_text = None
        if status != ExecutionStatus.FAILURE:
            output_text = self._format_output(rule.id, records, output_config)

        return self._finish(
            status,
            records,
            start_time,
            output_text=output_text,
            error_text=error_text,
            error_kind=ExecutionErrorKind.STEP_FAILED if failures else None,
        )

    async def _run_steps(
        self,
        snapshot: list[ExecutionStep],
        context: dict[str, Any],
        records: list[StepRecord],
        policy: StepFailurePolicy,
        cancel_event: asyncio.Event | None,
    ) -> ExecutionErrorKind | None:
        """Dispatch steps in order, appending a record per attempted step."""
        for step in snapshot:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Run cancelled between steps", next_step=step.index)
                return ExecutionErrorKind.CANCELLED

            record = await self._execute_step(step, context)
            records.append(record)
            STEPS_EXECUTED.labels(kind=step.kind, success=str(record.success).lower()).inc()

            if record.success:
                context["previous_results"].append(record.result)
            elif policy == StepFailurePolicy.ABORT:
                return ExecutionErrorKind.STEP_FAILED
        return None

    async def _execute_step(self, step: ExecutionStep, context: dict[str, Any]) -> StepRecord:
        try:
            outcome = await self._executor.execute(step, context)
            if not outcome.success:
                raise StepExecutionError(outcome.error or "Step reported failure", step.index)
        except StepExecutionError as e:
            logger.info("Step failed", step_index=step.index, kind=step.kind, error=e.message)
            return StepRecord(step_index=step.index, type=step.kind, success=False, error=e.message)
        except Exception as e:
            logger.warning(
                "Step executor raised",
                step_index=step.index,
                kind=step.kind,
                error=str(e),
                exc_info=True,
            )
            return StepRecord(step_index=step.index, type=step.kind, success=False, error=str(e))

        return StepRecord(step_index=step.index, type=step.kind, success=True, result=outcome.result)

    @staticmethod
    def _resolve_status(records: list[StepRecord], total_steps: int) -> ExecutionStatus:
        if len(records) == total_steps and all(r.success for r in records):
            return ExecutionStatus.SUCCESS
        if any(r.has_output for r in records):
            return ExecutionStatus.PARTIAL
        return ExecutionStatus.FAILURE

    def _format_output(self, rule_id: str, records: list[StepRecord], output_config: Any) -> str | None:
        successful = [r for r in records if r.success]
        try:
            return self._formatter.format(successful, output_config)
        except Exception as e:
            logger.error("Output formatting failed", rule_id=rule_id, error=str(e), exc_info=True)
            return None

    @staticmethod
    def _finish(
        status: ExecutionStatus,
        records: list[StepRecord],
        start_time: float,
        output_text: str | None = None,
        error_text: str | None = None,
        error_kind: ExecutionErrorKind | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            step_records=list(records),
            output_text=output_text,
            error_text=error_text,
            error_kind=error_kind,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
