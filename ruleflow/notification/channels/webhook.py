"""Generic webhook notification channel."""

import httpx

from ruleflow.core.logging import get_logger
from ruleflow.models.notification import NotificationTask
from ruleflow.notification.channels.base import NotificationChannel

logger = get_logger(__name__)


class WebhookChannel(NotificationChannel):
    """Posts a JSON summary of the run to the rule's webhook URL."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def channel_type(self) -> str:
        return "webhook"

    async def send(self, task: NotificationTask) -> bool:
        url = task.output_config.webhook_url
        if not url:
            logger.warning("Webhook output missing webhook_url", rule_id=task.rule_id)
            return False

        payload = {
            "kind": task.kind.value,
            "rule_id": task.rule_id,
            "rule_name": task.rule_name,
            "log_id": task.log_id,
            "title": task.title,
            "body": task.body,
            "created_at": task.created_at.isoformat(),
        }

        try:
            response = await self._client.post(url, json=payload)
            if response.is_success:
                logger.info("Webhook delivered", task_id=task.task_id, status_code=response.status_code)
                return True
            logger.warning("Webhook rejected", task_id=task.task_id, status_code=response.status_code)
            return False
        except httpx.HTTPError as e:
            logger.error("Webhook send error", task_id=task.task_id, error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()
