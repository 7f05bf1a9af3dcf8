"""Execution rule domain models."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from ruleflow.core.errors import RuleValidationError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ActivationMode(str, Enum):
    """Which dispatch paths may select a rule."""

    TRIGGER = "trigger"
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    ALL = "all"

    def allows_trigger(self) -> bool:
        return self in (ActivationMode.TRIGGER, ActivationMode.ALL)

    def allows_schedule(self) -> bool:
        return self in (ActivationMode.SCHEDULED, ActivationMode.ALL)

    def allows_manual(self) -> bool:
        return self in (ActivationMode.MANUAL, ActivationMode.ALL)


class ScheduleInterval(str, Enum):
    """Supported recurring schedule intervals."""

    EVERY_15_MINUTES = "15min"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def delta(self) -> timedelta:
        return _INTERVAL_DELTAS[self]


_INTERVAL_DELTAS = {
    ScheduleInterval.EVERY_15_MINUTES: timedelta(minutes=15),
    ScheduleInterval.HOURLY: timedelta(hours=1),
    ScheduleInterval.DAILY: timedelta(hours=24),
    ScheduleInterval.WEEKLY: timedelta(days=7),
}


def next_run_time(interval: ScheduleInterval | str, from_time: datetime) -> datetime:
    """Compute the next scheduled run.

    The next run is always measured from ``from_time`` (the claim time),
    never from the previous slot, so a late tick slides the schedule forward
    instead of piling up catch-up runs.

    Args:
        interval: Schedule interval
        from_time: Reference time

    Returns:
        ``from_time`` advanced by exactly one interval
    """
    return from_time + ScheduleInterval(interval).delta


class StepFailurePolicy(str, Enum):
    """What a run does after a step fails."""

    ABORT = "abort"
    CONTINUE = "continue"


class StepKind(str, Enum):
    """Execution step kinds."""

    INSTRUCTION = "instruction"
    TOOL_CALL = "tool_call"


class ToolCall(BaseModel):
    """Tool invocation carried by a tool-call step."""

    tool: str = Field(..., min_length=1, description="Tool slug, e.g. 'GMAIL_SEND_EMAIL'")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class InstructionStep(BaseModel):
    """Free-text instruction handled by the language model."""

    index: int = Field(default=0, ge=0, description="Position in the step list")
    kind: Literal["instruction"] = "instruction"
    content: str = Field(..., min_length=1, description="Instruction text")


class ToolCallStep(BaseModel):
    """Direct call of an external tool."""

    index: int = Field(default=0, ge=0, description="Position in the step list")
    kind: Literal["tool_call"] = "tool_call"
    content: ToolCall = Field(..., description="Tool invocation")


ExecutionStep = Annotated[
    Union[InstructionStep, ToolCallStep],
    Field(discriminator="kind"),
]


def reindex_steps(steps: list[ExecutionStep]) -> list[ExecutionStep]:
    """Return copies of ``steps`` whose index equals their list position."""
    return [step.model_copy(update={"index": position}) for position, step in enumerate(steps)]


class OutputPlatform(str, Enum):
    """Where run output is delivered besides the in-app notification."""

    NONE = "none"
    TELEGRAM = "telegram"
    WEBHOOK = "webhook"


class OutputFormat(str, Enum):
    """How step results are rendered into the final output text."""

    SUMMARY = "summary"
    DETAILED = "detailed"
    RAW = "raw"


class OutputConfig(BaseModel):
    """Output configuration passed through to the formatter and delivery."""

    platform: OutputPlatform = Field(default=OutputPlatform.NONE)
    format: OutputFormat = Field(default=OutputFormat.SUMMARY)
    chat_id: str | None = Field(default=None, description="Telegram chat ID")
    webhook_url: str | None = Field(default=None, description="Webhook delivery URL")


class ExecutionRule(BaseModel):
    """User-owned automation rule."""

    id: str = Field(..., description="Rule unique identifier")
    owner_id: str = Field(..., description="Owning user ID")
    name: str = Field(..., description="Rule name")
    description: str = Field(default="", description="Rule description")
    is_active: bool = Field(default=True, description="Whether rule is active")
    priority: int = Field(default=0, description="Dispatch priority (higher runs first)")
    accepted_triggers: list[str] = Field(
        default_factory=list,
        description="Trigger type identifiers this rule listens to",
    )
    topic_condition: str = Field(..., description="Free-text match criterion")
    execution_steps: list[ExecutionStep] = Field(
        default_factory=list,
        description="Ordered execution steps",
    )
    output_config: OutputConfig = Field(default_factory=OutputConfig)
    failure_policy: StepFailurePolicy | None = Field(
        default=None,
        description="Per-rule override of the deployment step failure policy",
    )
    activation_mode: ActivationMode = Field(default=ActivationMode.TRIGGER)
    schedule_enabled: bool = Field(default=False)
    schedule_interval: ScheduleInterval | None = Field(default=None)
    schedule_last_run: datetime | None = Field(default=None)
    schedule_next_run: datetime | None = Field(default=None)
    execution_count: int = Field(default=0, ge=0)
    last_executed_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def validate_schedule(self) -> "ExecutionRule":
        """An enabled schedule always carries an interval and a next run."""
        if self.schedule_enabled:
            if self.schedule_interval is None:
                raise ValueError("schedule_interval is required when schedule is enabled")
            if self.schedule_next_run is None:
                self.schedule_next_run = next_run_time(self.schedule_interval, self.created_at)
        return self

    def accepts_trigger(self, trigger_type: str) -> bool:
        """Check if rule listens to the given trigger type."""
        return trigger_type in self.accepted_triggers

    def is_trigger_candidate(self, trigger_type: str) -> bool:
        """Eligible for trigger dispatch of ``trigger_type``."""
        return (
            self.is_active
            and self.activation_mode.allows_trigger()
            and self.accepts_trigger(trigger_type)
        )

    def is_due(self, now: datetime) -> bool:
        """Eligible for the scheduler at ``now``."""
        return (
            self.is_active
            and self.schedule_enabled
            and self.activation_mode.allows_schedule()
            and self.schedule_next_run is not None
            and self.schedule_next_run <= now
        )

    def dispatch_order_key(self) -> tuple[int, float, str]:
        """Sort key: priority desc, most recently updated first, then id."""
        return (-self.priority, -self.updated_at.timestamp(), self.id)

    def validate_definition(self) -> None:
        """Reject rules that could never run.

        Raises:
            RuleValidationError: Empty step list, missing topic condition or a
                trigger rule that accepts no trigger types
        """
        if not self.execution_steps:
            raise RuleValidationError("Rule must have at least one execution step", "execution_steps")
        if not self.topic_condition.strip():
            raise RuleValidationError("Rule must have a topic condition", "topic_condition")
        if not self.name.strip():
            raise RuleValidationError("Rule must have a name", "name")
        if self.activation_mode == ActivationMode.TRIGGER and not self.accepted_triggers:
            raise RuleValidationError(
                "Trigger rules must accept at least one trigger type", "accepted_triggers"
            )

    def with_changes(self, changes: dict[str, Any], now: datetime) -> "ExecutionRule":
        """Return a copy with a partial update applied.

        Fields absent from ``changes`` are left untouched. Steps are
        re-indexed, and the next scheduled run is recomputed from ``now`` when
        the interval changes or the schedule is switched on.

        Raises:
            RuleValidationError: If the merged rule is malformed
        """
        protected = {"id", "owner_id", "created_at", "execution_count", "last_executed_at"}
        data = self.model_dump()
        data.update({k: v for k, v in changes.items() if k not in protected})

        enabled = data.get("schedule_enabled", False)
        interval = data.get("schedule_interval")
        interval_changed = "schedule_interval" in changes and changes["schedule_interval"] != self.schedule_interval
        switched_on = enabled and not self.schedule_enabled
        if not enabled:
            data["schedule_next_run"] = None
        elif interval and (interval_changed or switched_on or data.get("schedule_next_run") is None):
            data["schedule_next_run"] = next_run_time(interval, now)
        data["updated_at"] = now

        try:
            updated = ExecutionRule.model_validate(data)
        except ValidationError as e:
            raise RuleValidationError(str(e)) from e
        updated.execution_steps = reindex_steps(updated.execution_steps)
        updated.validate_definition()
        return updated
