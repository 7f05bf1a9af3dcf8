"""Rule API schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from ruleflow.models.rule import (
    ActivationMode,
    ExecutionRule,
    ExecutionStep,
    OutputConfig,
    ScheduleInterval,
    StepFailurePolicy,
    reindex_steps,
    utc_now,
)


def generate_rule_id() -> str:
    return f"rule_{uuid.uuid4().hex[:16]}"


def _clean_triggers(value: list[str] | None) -> list[str] | None:
    """Strip, drop blanks and de-duplicate trigger types, keeping order."""
    if value is None:
        return None
    cleaned: list[str] = []
    for item in value:
        item = item.strip()
        if item and item not in cleaned:
            cleaned.append(item)
    return cleaned


class RuleCreate(BaseModel):
    """Schema for creating a new rule."""

    name: str = Field(..., min_length=1, max_length=100, description="Rule name")
    description: str = Field(default="", max_length=500, description="Rule description")
    is_active: bool = Field(default=True, description="Whether rule is active")
    priority: int = Field(default=0, ge=0, le=1000, description="Rule priority")
    accepted_triggers: list[str] = Field(default_factory=list, description="Accepted trigger types")
    topic_condition: str = Field(..., min_length=1, description="Free-text match criterion")
    execution_steps: list[ExecutionStep] = Field(..., min_length=1, description="Ordered steps")
    output_config: OutputConfig = Field(default_factory=OutputConfig)
    failure_policy: StepFailurePolicy | None = Field(default=None)
    activation_mode: ActivationMode = Field(default=ActivationMode.TRIGGER)
    schedule_enabled: bool = Field(default=False)
    schedule_interval: ScheduleInterval | None = Field(default=None)

    @field_validator("name", "topic_condition")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("accepted_triggers")
    @classmethod
    def clean_triggers(cls, value: list[str]) -> list[str]:
        return _clean_triggers(value)

    @model_validator(mode="after")
    def validate_activation(self) -> "RuleCreate":
        if self.schedule_enabled and self.schedule_interval is None:
            raise ValueError("schedule_interval is required when schedule_enabled is true")
        if self.activation_mode == ActivationMode.TRIGGER and not self.accepted_triggers:
            raise ValueError("accepted_triggers must not be empty for trigger rules")
        return self

    def to_rule(self, owner_id: str, now: datetime | None = None) -> ExecutionRule:
        """Build the domain rule owned by ``owner_id``."""
        now = now or utc_now()
        data = self.model_dump(exclude={"execution_steps"})
        return ExecutionRule(
            id=generate_rule_id(),
            owner_id=owner_id,
            execution_steps=reindex_steps(self.execution_steps),
            created_at=now,
            updated_at=now,
            **data,
        )


class RuleUpdate(BaseModel):
    """Schema for partially updating an existing rule."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None
    priority: int | None = Field(default=None, ge=0, le=1000)
    accepted_triggers: list[str] | None = None
    topic_condition: str | None = Field(default=None, min_length=1)
    execution_steps: list[ExecutionStep] | None = Field(default=None, min_length=1)
    output_config: OutputConfig | None = None
    failure_policy: StepFailurePolicy | None = None
    activation_mode: ActivationMode | None = None
    schedule_enabled: bool | None = None
    schedule_interval: ScheduleInterval | None = None

    @field_validator("accepted_triggers")
    @classmethod
    def clean_triggers(cls, value: list[str] | None) -> list[str] | None:
        return _clean_triggers(value)

    def changes(self) -> dict:
        """Fields explicitly sent by the client."""
        return self.model_dump(exclude_unset=True)


class RuleStatusUpdate(BaseModel):
    """Schema for activating or deactivating a rule."""

    is_active: bool = Field(..., description="Whether rule is active")


class RuleResponse(BaseModel):
    """Schema for rule response."""

    id: str
    owner_id: str
    name: str
    description: str
    is_active: bool
    priority: int
    accepted_triggers: list[str]
    topic_condition: str
    execution_steps: list[ExecutionStep]
    output_config: OutputConfig
    failure_policy: StepFailurePolicy | None
    activation_mode: ActivationMode
    schedule_enabled: bool
    schedule_interval: ScheduleInterval | None
    schedule_last_run: datetime | None
    schedule_next_run: datetime | None
    execution_count: int
    last_executed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: ExecutionRule) -> "RuleResponse":
        return cls.model_validate(rule.model_dump())


class ManualRuleSummary(BaseModel):
    """Rule entry in the manual invocation picker."""

    id: str
    name: str
    description: str
    priority: int
