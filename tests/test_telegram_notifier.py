"""
Tests for Telegram delivery. The Bot is mocked; nothing touches the network.
"""

import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from telegram.constants import ParseMode
from telegram.error import TelegramError

from communication.telegram_notifier import TelegramNotifier, TelegramDeliveryError


def fake_bot(send_result=None, send_error=None):
    bot = MagicMock()
    bot.__aenter__.return_value = bot
    bot.__aexit__.return_value = False
    bot.send_message = AsyncMock(return_value=send_result, side_effect=send_error)
    return bot


class TestTelegramNotifier(unittest.TestCase):

    def setUp(self):
        self.notifier = TelegramNotifier("123:abc", allowed_users=[42], send_timeout=5)

    def test_send_html(self):
        bot = fake_bot(send_result=MagicMock(message_id=7))
        with patch.object(TelegramNotifier, "_make_bot", return_value=bot):
            self.notifier.send_html(42, "<b>hi</b>")
        bot.send_message.assert_awaited_once_with(chat_id=42, text="<b>hi</b>", parse_mode=ParseMode.HTML)

    def test_send_result(self):
        bot = fake_bot(send_result=MagicMock(message_id=7))
        with patch.object(TelegramNotifier, "_make_bot", return_value=bot):
            outcome = self.notifier.send(42, "plain")
        self.assertTrue(outcome.success)
        self.assertEqual(outcome.message_id, 7)

    def test_api_error_raises_delivery_error(self):
        bot = fake_bot(send_error=TelegramError("chat not found"))
        with patch.object(TelegramNotifier, "_make_bot", return_value=bot):
            with self.assertRaises(TelegramDeliveryError):
                self.notifier.send_html(42, "hi")

    def test_refuses_chats_outside_allow_list(self):
        with patch.object(TelegramNotifier, "_make_bot") as make_bot:
            outcome = self.notifier.send(99, "hi")
        self.assertFalse(outcome.success)
        make_bot.assert_not_called()

    def test_paired_chat_may_be_messaged(self):
        notifier = TelegramNotifier("123:abc", allowed_users=[42], is_paired=lambda chat_id: chat_id == 99)
        bot = fake_bot(send_result=MagicMock(message_id=3))
        with patch.object(TelegramNotifier, "_make_bot", return_value=bot):
            outcome = notifier.send(99, "hi")
        self.assertTrue(outcome.success)
        self.assertFalse(notifier.may_message(7))

    def test_unconfigured(self):
        notifier = TelegramNotifier("", allowed_users=[42])
        self.assertFalse(notifier.is_available())
        with self.assertRaises(TelegramDeliveryError):
            notifier.send_html(42, "hi")


if __name__ == "__main__":
    unittest.main()
