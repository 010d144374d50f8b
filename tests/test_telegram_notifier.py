"""Tests for src.adapters.telegram_notifier — Markdown delivery with plain-text retry."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest

from src.adapters.telegram_notifier import TelegramNotifier


@pytest.mark.asyncio
async def test_sends_markdown():
    bot = MagicMock()
    bot.send_message = AsyncMock()

    await TelegramNotifier(bot).send_message(12345, "⏰ *Reminder:* Call mom")

    bot.send_message.assert_awaited_once_with(
        chat_id=12345, text="⏰ *Reminder:* Call mom", parse_mode=ParseMode.MARKDOWN,
    )


@pytest.mark.asyncio
async def test_falls_back_to_plain_text():
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=[BadRequest("Can't parse entities"), None])

    await TelegramNotifier(bot).send_message(12345, "Email boss_report *draft")

    assert bot.send_message.await_count == 2
    assert "parse_mode" not in bot.send_message.await_args_list[1].kwargs


@pytest.mark.asyncio
async def test_other_errors_propagate():
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=RuntimeError("network down"))

    with pytest.raises(RuntimeError):
        await TelegramNotifier(bot).send_message(12345, "hi")
