"""Telegram notification adapter — implements NotificationPort.

Delivers reminder texts to the account's Telegram chat. The account id is
the Telegram chat id, so no lookup is needed.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort (push and in-app channels)."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        """Send as Markdown; resend as plain text if the markup is rejected.

        Action titles come from transcripts and may contain stray `*` or `_`.
        """
        try:
            await self._bot.send_message(chat_id=user_id, text=text, parse_mode=ParseMode.MARKDOWN)
        except BadRequest as exc:
            logger.warning("Markdown rejected for chat %d (%s), sending plain text", user_id, exc)
            await self._bot.send_message(chat_id=user_id, text=text)
        logger.debug("Telegram message delivered to %d (%d chars)", user_id, len(text))
