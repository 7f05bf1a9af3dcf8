"""Notification emitter queuing post-run notifications."""

import uuid
from typing import Any

from redis.exceptions import RedisError

from ruleflow.core.logging import get_logger
from ruleflow.models.notification import NotificationKind, NotificationTask
from ruleflow.models.rule import OutputConfig
from ruleflow.observability.metrics import NOTIFICATIONS_QUEUED
from ruleflow.observability.tracing import current_trace_id
from ruleflow.storage.auxiliary import NotificationQueue

logger = get_logger(__name__)

_TITLES = {
    NotificationKind.EXECUTION_SUCCESS: "Rule '{name}' completed",
    NotificationKind.EXECUTION_FAILURE: "Rule '{name}' failed",
    NotificationKind.EXECUTION_PARTIAL: "Rule '{name}' partially completed",
}

# Telegram rejects messages above 4096 characters
MAX_BODY_LENGTH = 4000


class QueueNotificationEmitter:
    """Turns run outcomes into notification tasks on the Redis queue.

    Delivery happens later in :class:`NotificationWorker`; emitting only
    enqueues, so a slow channel never delays the run that produced it.
    """

    def __init__(self, queue: NotificationQueue):
        self._queue = queue

    async def emit(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        """Queue a notification for a finished run.

        Args:
            kind: Notification kind derived from the run status
            payload: Run summary (user_id, rule_id, rule_name, log_id,
                trigger_slug, status, output_text, error_text, output_config)
        """
        task = self.build_task(kind, payload)
        try:
            await self._queue.enqueue(task)
        except RedisError as e:
            logger.error("Notification not queued", task_id=task.task_id, rule_id=task.rule_id, error=str(e))
            return
        NOTIFICATIONS_QUEUED.labels(kind=kind.value).inc()

        logger.info(
            "Notification queued",
            task_id=task.task_id,
            rule_id=task.rule_id,
            kind=kind.value,
        )

    @staticmethod
    def build_task(kind: NotificationKind, payload: dict[str, Any]) -> NotificationTask:
        rule_name = payload.get("rule_name") or payload["rule_id"]
        body = payload.get("output_text") or payload.get("error_text") or ""
        if len(body) > MAX_BODY_LENGTH:
            body = body[: MAX_BODY_LENGTH - 3] + "..."

        return NotificationTask(
            task_id=f"notify_{uuid.uuid4().hex[:12]}",
            kind=kind,
            user_id=payload["user_id"],
            rule_id=payload["rule_id"],
            rule_name=payload.get("rule_name", ""),
            log_id=payload.get("log_id"),
            title=_TITLES[kind].format(name=rule_name),
            body=body,
            output_config=OutputConfig.model_validate(payload.get("output_config") or {}),
            metadata={
                "trigger_slug": payload.get("trigger_slug"),
                "status": payload.get("status"),
                "trace_id": current_trace_id() or None,
            },
        )
