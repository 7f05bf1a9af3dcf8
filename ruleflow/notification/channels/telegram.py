"""Telegram notification channel."""

from aiogram import Bot

from ruleflow.core.config import get_settings
from ruleflow.core.logging import get_logger
from ruleflow.models.notification import NotificationTask
from ruleflow.notification.channels.base import NotificationChannel

logger = get_logger(__name__)


class TelegramChannel(NotificationChannel):
    """Telegram Bot notification channel."""

    def __init__(self, bot: Bot | None = None):
        settings = get_settings()
        self._bot = bot
        if self._bot is None and settings.telegram_bot_token:
            self._bot = Bot(token=settings.telegram_bot_token)

    @property
    def channel_type(self) -> str:
        return "telegram"

    async def send(self, task: NotificationTask) -> bool:
        if not self._bot:
            logger.warning("Telegram bot not configured")
            return False

        chat_id = task.output_config.chat_id
        if not chat_id:
            logger.warning("Telegram output missing chat_id", rule_id=task.rule_id)
            return False

        try:
            await self._bot.send_message(chat_id=chat_id, text=self.render(task))
            logger.info("Telegram message sent", chat_id=chat_id, task_id=task.task_id)
            return True
        except Exception as e:
            logger.error("Telegram send failed", chat_id=chat_id, error=str(e))
            return False

    async def close(self) -> None:
        """Close bot session."""
        if self._bot:
            await self._bot.session.close()
