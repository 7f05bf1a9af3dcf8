"""Notification domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ruleflow.models.rule import OutputConfig, utc_now


class NotificationKind(str, Enum):
    """Kinds of notification emitted after a run."""

    EXECUTION_SUCCESS = "execution_success"
    EXECUTION_FAILURE = "execution_failure"
    EXECUTION_PARTIAL = "execution_partial"


class NotificationTask(BaseModel):
    """Queued notification awaiting delivery."""

    task_id: str = Field(..., description="Task unique identifier")
    kind: NotificationKind = Field(..., description="Notification kind")
    user_id: str = Field(..., description="Recipient user ID")
    rule_id: str = Field(..., description="Rule that produced the run")
    rule_name: str = Field(default="", description="Rule name at run time")
    log_id: str | None = Field(default=None, description="Execution log entry ID")
    title: str = Field(..., description="Short title")
    body: str = Field(default="", description="Notification body")
    output_config: OutputConfig = Field(default_factory=OutputConfig)
    retry_count: int = Field(default=0, ge=0, description="Current retry count")
    created_at: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def should_retry(self, max_retry: int) -> bool:
        """Check if task should be retried."""
        return self.retry_count < max_retry

    def calculate_retry_delay(self, base_delay: float = 1.0) -> float:
        """Calculate exponential backoff delay in seconds."""
        return base_delay * (2 ** self.retry_count)


class Notification(BaseModel):
    """In-app notification shown to the user."""

    id: str
    user_id: str
    kind: NotificationKind
    title: str
    body: str = ""
    rule_id: str | None = None
    rule_name: str | None = None
    log_id: str | None = None
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)
