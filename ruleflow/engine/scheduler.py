"""Scheduler advancing recurring rules."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from ruleflow.core.errors import StorageError
from ruleflow.core.logging import get_logger
from ruleflow.engine.recorder import ExecutionRecorder
from ruleflow.engine.runner import StepRunner
from ruleflow.models.execution import SCHEDULED_TRIGGER_SLUG
from ruleflow.models.rule import ExecutionRule, as_utc, next_run_time, utc_now
from ruleflow.observability.metrics import SCHEDULER_CLAIMS
from ruleflow.observability.tracing import TraceContext
from ruleflow.storage.rule_store import RuleStore

logger = get_logger(__name__)


@dataclass
class TickReport:
    """Summary of one scheduler tick."""

    due: int = 0
    claimed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class Scheduler:
    """Finds due rules, claims each exactly once and runs it.

    The next run is computed from the claim time, not from the previous
    slot: a delayed tick slides the schedule forward rather than queueing
    catch-up runs.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        runner: StepRunner,
        recorder: ExecutionRecorder,
    ):
        self._rule_store = rule_store
        self._runner = runner
        self._recorder = recorder

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Run every rule due at ``now``.

        Each due rule is handled as its own task so a slow run never holds
        up the others. A failure for one rule is logged and reported without
        affecting the rest.

        Raises:
            StorageError: If the due rules could not be listed
        """
        now = as_utc(now) if now else utc_now()
        due = await self._rule_store.get_due(now)
        report = TickReport(due=len(due))
        if not due:
            return report

        logger.info("Scheduler tick", due=len(due), now=now.isoformat())
        results = await asyncio.gather(
            *(self.run_rule(rule, now) for rule in due),
            return_exceptions=True,
        )

        for rule, outcome in zip(due, results):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Scheduled run failed",
                    rule_id=rule.id,
                    error=str(outcome),
                    exc_info=outcome,
                )
                report.failed.append(rule.id)
            elif outcome:
                report.claimed.append(rule.id)
            else:
                report.skipped.append(rule.id)
        return report

    async def run_rule(self, rule: ExecutionRule, now: datetime) -> bool:
        """Claim and run one due rule.

        The rule that runs is the copy read back under the claim, so edits
        made after ``rule`` was listed are honoured and a rule that stopped
        being due is skipped.

        Returns:
            True if this caller won the claim and ran the rule, False if
            another scheduler got there first or the rule is no longer due

        Raises:
            StorageError: If the claim or the log write failed; a failed log
                write releases the claim so the run is retried next tick
        """
        now = as_utc(now)
        expected = rule.schedule_next_run
        if expected is None or rule.schedule_interval is None:
            return False

        new_next_run = next_run_time(rule.schedule_interval, now)
        claimed = await self._rule_store.claim_scheduled_run(rule.id, expected, new_next_run, now)
        if claimed is None:
            SCHEDULER_CLAIMS.labels(outcome="lost").inc()
            logger.debug("Schedule claim lost", rule_id=rule.id)
            return False

        SCHEDULER_CLAIMS.labels(outcome="won").inc()
        with TraceContext(rule_id=rule.id, trigger_slug=SCHEDULED_TRIGGER_SLUG):
            result = await self._runner.run(claimed, SCHEDULED_TRIGGER_SLUG, {})

            try:
                await self._recorder.record(result, claimed, SCHEDULED_TRIGGER_SLUG)
            except StorageError:
                released = await self._rule_store.release_scheduled_run(
                    rule.id,
                    claimed_next_run=new_next_run,
                    previous_next_run=expected,
                    previous_last_run=rule.schedule_last_run,
                )
                logger.error("Scheduled run not recorded", rule_id=rule.id, claim_released=released)
                raise
        return True

    async def run_forever(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set."""
        logger.info("Scheduler loop started", interval_seconds=interval_seconds)
        while not stop_event.is_set():
            try:
                await self.tick()
            except StorageError as e:
                logger.error("Scheduler tick failed", error=str(e))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("Scheduler loop stopped")
