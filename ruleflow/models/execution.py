"""Execution result and log domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ruleflow.models.rule import utc_now

SCHEDULED_TRIGGER_SLUG = "scheduled"
MANUAL_TRIGGER_SLUG = "manual"


class ExecutionStatus(str, Enum):
    """Final status of a run."""

    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class ExecutionErrorKind(str, Enum):
    """Classification of a run that did not succeed."""

    STEP_FAILED = "step_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    EMPTY = "empty"


class StepRecord(BaseModel):
    """Outcome of one step within a run."""

    step_index: int = Field(..., ge=0, description="Index of the step in the snapshot")
    type: str = Field(..., description="Step kind")
    success: bool = Field(..., description="Whether the step succeeded")
    result: Any = Field(default=None, description="Step output when successful")
    error: str | None = Field(default=None, description="Error message when failed")

    @property
    def has_output(self) -> bool:
        return self.success and self.result not in (None, "", [], {})


class ExecutionResult(BaseModel):
    """Ephemeral result produced by the step runner."""

    status: ExecutionStatus
    step_records: list[StepRecord] = Field(default_factory=list)
    output_text: str | None = None
    error_text: str | None = None
    error_kind: ExecutionErrorKind | None = None
    duration_ms: int = Field(default=0, ge=0)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS


class ExecutionLogEntry(BaseModel):
    """Durable record of one run.

    ``rule_name`` is copied from the rule as it was when the run started so
    later renames or deletions never change history.
    """

    id: str = Field(..., description="Log entry identifier")
    rule_id: str = Field(..., description="Rule that ran")
    rule_name: str = Field(..., description="Rule name at run start")
    user_id: str = Field(..., description="Rule owner")
    trigger_slug: str = Field(
        ...,
        description="Trigger type id, or 'scheduled' / 'manual'",
    )
    status: ExecutionStatus
    steps_json: list[StepRecord] = Field(default_factory=list)
    output_text: str | None = None
    error_text: str | None = None
    duration_ms: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)


class ExecutionStats(BaseModel):
    """Aggregate statistics over a set of log entries."""

    total_runs: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    avg_duration_ms: int = Field(default=0, ge=0)


class ManualInvocationResult(BaseModel):
    """Outcome returned to the caller of a manual invocation."""

    success: bool
    rule_id: str
    rule_name: str
    output: str | None = None
    error: str | None = None
    executed_at: datetime = Field(default_factory=utc_now)


class ConversationMessage(BaseModel):
    """One turn of conversation threaded into a manual run."""

    role: str = Field(..., min_length=1)
    content: str = Field(default="")
