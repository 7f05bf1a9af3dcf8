"""Persisting run results into execution history."""

from ruleflow.core.logging import get_logger
from ruleflow.engine.interfaces import NotificationEmitter
from ruleflow.models.execution import ExecutionLogEntry, ExecutionResult, ExecutionStatus
from ruleflow.models.notification import NotificationKind
from ruleflow.models.rule import ExecutionRule
from ruleflow.observability.metrics import RUN_DURATION, RUNS_RECORDED
from ruleflow.storage.log_store import LogStore, generate_log_id
from ruleflow.storage.rule_store import RuleStore

logger = get_logger(__name__)

_NOTIFICATION_KINDS = {
    ExecutionStatus.SUCCESS: NotificationKind.EXECUTION_SUCCESS,
    ExecutionStatus.FAILURE: NotificationKind.EXECUTION_FAILURE,
    ExecutionStatus.PARTIAL: NotificationKind.EXECUTION_PARTIAL,
}


def trigger_path(trigger_slug: str) -> str:
    """Metric label for the dispatch path of a trigger slug."""
    if trigger_slug in ("scheduled", "manual"):
        return trigger_slug
    return "trigger"


class ExecutionRecorder:
    """Writes one log entry per completed run, then bumps the rule counter.

    The log write always precedes the counter increment so a counter never
    exists without its log entry.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        log_store: LogStore,
        emitter: NotificationEmitter | None = None,
    ):
        self._rule_store = rule_store
        self._log_store = log_store
        self._emitter = emitter

    async def record(
        self,
        result: ExecutionResult,
        rule: ExecutionRule,
        trigger_slug: str,
    ) -> ExecutionLogEntry:
        """Persist a run.

        Args:
            result: Result produced by the step runner
            rule: The rule as it was when the run started
            trigger_slug: Trigger type, "scheduled" or "manual"

        Returns:
            Stored log entry

        Raises:
            StorageError: If the log or the counter could not be written
        """
        entry = ExecutionLogEntry(
            id=generate_log_id(),
            rule_id=rule.id,
            rule_name=rule.name,
            user_id=rule.owner_id,
            trigger_slug=trigger_slug,
            status=result.status,
            steps_json=result.step_records,
            output_text=result.output_text,
            error_text=result.error_text,
            duration_ms=result.duration_ms,
        )

        await self._log_store.create(entry)
        await self._rule_store.increment_execution_count(rule.id, entry.created_at)

        path = trigger_path(trigger_slug)
        RUNS_RECORDED.labels(path=path, status=result.status.value).inc()
        RUN_DURATION.labels(path=path).observe(result.duration_ms / 1000)

        logger.info(
            "Run recorded",
            rule_id=rule.id,
            log_id=entry.id,
            trigger_slug=trigger_slug,
            status=result.status.value,
            duration_ms=result.duration_ms,
        )

        await self._notify(entry, rule)
        return entry

    async def _notify(self, entry: ExecutionLogEntry, rule: ExecutionRule) -> None:
        """Emit the post-run notification; delivery problems never fail the run."""
        if self._emitter is None:
            return
        payload = {
            "user_id": entry.user_id,
            "rule_id": entry.rule_id,
            "rule_name": entry.rule_name,
            "log_id": entry.id,
            "trigger_slug": entry.trigger_slug,
            "status": entry.status.value,
            "output_text": entry.output_text,
            "error_text": entry.error_text,
            "output_config": rule.output_config.model_dump(mode="json"),
        }
        try:
            await self._emitter.emit(_NOTIFICATION_KINDS[entry.status], payload)
        except Exception as e:
            logger.warning("Notification emit failed", rule_id=entry.rule_id, log_id=entry.id, error=str(e))
