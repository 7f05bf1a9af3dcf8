"""Execution history, invocation and trigger API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ruleflow.models.execution import ConversationMessage, ExecutionLogEntry, ExecutionStats


class LogPage(BaseModel):
    """One page of execution history with stats over the whole scope."""

    items: list[ExecutionLogEntry] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    stats: ExecutionStats = Field(default_factory=ExecutionStats)


class InvokeRequest(BaseModel):
    """Manual invocation request."""

    rule_id: str = Field(..., min_length=1, description="Rule to invoke")
    context: str = Field(default="", description="Free-text context for the steps")
    conversation_history: list[ConversationMessage] | None = Field(
        default=None,
        description="Prior conversation threaded into the run",
    )


class TriggerRequest(BaseModel):
    """Synchronous trigger submission."""

    event_id: str = Field(default="", description="Optional idempotency key")
    trigger_type: str = Field(..., min_length=1, description="Trigger type identifier")
    payload: dict[str, Any] = Field(default_factory=dict, description="Trigger payload")


class TriggerRun(BaseModel):
    """One rule run caused by a submitted trigger."""

    rule_id: str
    rule_name: str
    log_id: str
    status: str
    output: str | None = None
    error: str | None = None


class TriggerResponse(BaseModel):
    event_id: str
    duplicate: bool = False
    runs: list[TriggerRun] = Field(default_factory=list)


class TickRequest(BaseModel):
    now: datetime | None = Field(default=None, description="Tick time (defaults to now)")


class TickResponse(BaseModel):
    due: int
    claimed: list[str]
    skipped: list[str]
    failed: list[str]

