"""Notification API schemas."""

from pydantic import BaseModel, Field

from ruleflow.models.notification import Notification


class NotificationList(BaseModel):
    """A user's notifications with the unread badge count."""

    items: list[Notification] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    unread_count: int = Field(default=0, ge=0)


class MarkAllReadResponse(BaseModel):
    updated: int = Field(default=0, ge=0, description="Notifications marked as read")
