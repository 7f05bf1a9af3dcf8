"""Base class for notification channels."""

from abc import ABC, abstractmethod

from ruleflow.models.notification import NotificationTask


class NotificationChannel(ABC):
    """Abstract base class for external delivery channels."""

    @property
    @abstractmethod
    def channel_type(self) -> str:
        """Return channel type identifier, matching ``OutputPlatform`` values."""
        pass

    @abstractmethod
    async def send(self, task: NotificationTask) -> bool:
        """Deliver a notification using the task's output configuration.

        Args:
            task: Notification task with title, body and output config

        Returns:
            True if sent successfully
        """
        pass

    @staticmethod
    def render(task: NotificationTask) -> str:
        if task.body:
            return f"{task.title}\n\n{task.body}"
        return task.title

    async def close(self) -> None:
        """Clean up resources. Override if needed."""
        pass
