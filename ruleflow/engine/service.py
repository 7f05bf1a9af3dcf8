"""Automation service wiring the trigger, schedule and manual paths."""

import asyncio
from datetime import datetime

from redis.asyncio import Redis

from ruleflow.core.config import Settings, get_settings
from ruleflow.core.errors import ManualInvocationError
from ruleflow.core.logging import get_logger
from ruleflow.engine.dispatcher import DispatchOutcome, Dispatcher, DispatchPolicy
from ruleflow.engine.executor import DefaultStepExecutor
from ruleflow.engine.formatter import TextOutputFormatter
from ruleflow.engine.interfaces import (
    ConditionEvaluator,
    NotificationEmitter,
    OutputFormatter,
    StepExecutor,
)
from ruleflow.engine.llm.engine import LLMConditionEvaluator, create_openai_client
from ruleflow.engine.recorder import ExecutionRecorder
from ruleflow.engine.runner import StepRunner
from ruleflow.engine.scheduler import Scheduler, TickReport
from ruleflow.models.event import TriggerEvent
from ruleflow.models.execution import (
    MANUAL_TRIGGER_SLUG,
    ConversationMessage,
    ManualInvocationResult,
)
from ruleflow.models.rule import StepFailurePolicy
from ruleflow.notification.emitter import QueueNotificationEmitter
from ruleflow.observability.tracing import TraceContext
from ruleflow.storage.auxiliary import ConditionCacheStore, NotificationQueue
from ruleflow.storage.log_store import LogStore
from ruleflow.storage.rule_store import RuleStore

logger = get_logger(__name__)


class AutomationService:
    """Entry points into the engine: trigger events, scheduler ticks and manual runs."""

    def __init__(
        self,
        rule_store: RuleStore,
        log_store: LogStore,
        evaluator: ConditionEvaluator,
        executor: StepExecutor,
        formatter: OutputFormatter | None = None,
        emitter: NotificationEmitter | None = None,
        dispatch_policy: DispatchPolicy = DispatchPolicy.FIRST_MATCH,
        failure_policy: StepFailurePolicy = StepFailurePolicy.ABORT,
        run_timeout_seconds: float | None = None,
    ):
        self.rule_store = rule_store
        self.log_store = log_store
        self._executor = executor

        self.runner = StepRunner(
            executor,
            formatter or TextOutputFormatter(),
            failure_policy=failure_policy,
            timeout_seconds=run_timeout_seconds,
        )
        self.recorder = ExecutionRecorder(rule_store, log_store, emitter)
        self.dispatcher = Dispatcher(rule_store, evaluator, self.runner, self.recorder, dispatch_policy)
        self.scheduler = Scheduler(rule_store, self.runner, self.recorder)

    async def handle_trigger(self, event: TriggerEvent) -> list[DispatchOutcome]:
        """Dispatch a trigger event and run the selected rules."""
        logger.info(
            "Handling trigger",
            event_id=event.event_id,
            trigger_type=event.trigger_type,
            user_id=event.user_id,
        )
        return await self.dispatcher.dispatch(event)

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Run one scheduler tick."""
        return await self.scheduler.tick(now)

    async def invoke_manual(
        self,
        user_id: str,
        rule_id: str,
        context: str = "",
        conversation_history: list[ConversationMessage] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ManualInvocationResult:
        """Run a rule on explicit request.

        Args:
            user_id: Caller; must own the rule
            rule_id: Rule to run
            context: Free-text context handed to the steps
            conversation_history: Prior conversation threaded into the run
            cancel_event: Set to stop dispatching further steps

        Returns:
            Invocation result; ``success`` is True only for a fully successful run

        Raises:
            ManualInvocationError: If the rule is unknown, inactive or does
                not allow manual activation; nothing is run or logged
            StorageError: If the rule could not be loaded or the run not recorded
        """
        rule = await self.rule_store.get_by_id_and_user(rule_id, user_id)
        if rule is None:
            raise ManualInvocationError("Rule not found", ManualInvocationError.NOT_FOUND, rule_id)
        if not rule.is_active:
            raise ManualInvocationError("Rule is not active", ManualInvocationError.INACTIVE, rule_id)
        if not rule.activation_mode.allows_manual():
            raise ManualInvocationError(
                "Rule does not support manual invocation",
                ManualInvocationError.MODE_NOT_ALLOWED,
                rule_id,
            )

        with TraceContext(rule_id=rule.id, trigger_slug=MANUAL_TRIGGER_SLUG, user_id=user_id):
            logger.info("Manual invocation")
            result = await self.runner.run(
                rule,
                MANUAL_TRIGGER_SLUG,
                {"context": context},
                conversation_history=conversation_history,
                cancel_event=cancel_event,
            )
            entry = await self.recorder.record(result, rule, MANUAL_TRIGGER_SLUG)

        return ManualInvocationResult(
            success=result.succeeded,
            rule_id=rule.id,
            rule_name=rule.name,
            output=result.output_text,
            error=result.error_text,
            executed_at=entry.created_at,
        )

    async def close(self) -> None:
        close = getattr(self._executor, "close", None)
        if close is not None:
            await close()


def build_service(redis: Redis, settings: Settings | None = None) -> AutomationService:
    """Build a service backed by Redis with the default collaborators."""
    settings = settings or get_settings()
    client = create_openai_client(settings)

    return AutomationService(
        rule_store=RuleStore(redis),
        log_store=LogStore(redis),
        evaluator=LLMConditionEvaluator(
            client=client,
            cache=ConditionCacheStore(redis, ttl_seconds=settings.condition_cache_ttl),
            settings=settings,
        ),
        executor=DefaultStepExecutor(client=client, settings=settings),
        emitter=QueueNotificationEmitter(NotificationQueue(redis)),
        dispatch_policy=DispatchPolicy(settings.dispatch_policy),
        failure_policy=StepFailurePolicy(settings.step_failure_policy),
        run_timeout_seconds=settings.run_timeout_seconds,
    )
