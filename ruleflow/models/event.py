"""Trigger event domain model."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ruleflow.models.rule import utc_now


class TriggerEvent(BaseModel):
    """External trigger event received from the message queue or HTTP."""

    event_id: str = Field(default="", description="Event unique identifier for idempotency")
    trigger_type: str = Field(..., min_length=1, description="Trigger type, e.g. 'gmail_new_email'")
    user_id: str = Field(..., min_length=1, description="User whose rules should be considered")
    payload: dict[str, Any] = Field(default_factory=dict, description="Trigger payload")
    timestamp: datetime = Field(default_factory=utc_now, description="Event timestamp")

    def model_post_init(self, __context: Any) -> None:
        """Generate an event id if the producer did not send one."""
        if not self.event_id:
            self.event_id = f"evt_{uuid.uuid4().hex[:16]}"
