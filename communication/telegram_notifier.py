"""
Chapterwatch - Telegram Notifier
Delivers new-entry notices through the Telegram Bot API.

Each send runs on a private event loop with its own Bot instance, so the
scheduler thread (or any other thread) can call it synchronously.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Iterable

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from core.logger import log_info, log_error, log_warning, log_success


class TelegramDeliveryError(Exception):
    """A message could not be delivered."""


@dataclass
class TelegramResult:
    """
    Result from a Telegram send operation.

    Attributes:
        success: Whether the send succeeded
        message: Status message (success info or error description)
        chat_id: The chat ID the message was sent to
        message_id: Telegram's message ID
        timestamp: When the operation occurred
    """
    success: bool
    message: str
    chat_id: int
    message_id: Optional[int] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()

    def __str__(self) -> str:
        status = "Success" if self.success else "Failed"
        return f"{status}: {self.message}"


class TelegramNotifier:
    """
    Telegram notifier using the Bot API.

    Only chats in allowed_users or paired chats are ever messaged; in
    private chats the chat id equals the user id.
    """

    def __init__(
        self,
        bot_token: str,
        allowed_users: Optional[Iterable[int]] = None,
        send_timeout: float = 30.0,
        is_paired: Optional[Callable[[int], bool]] = None,
    ):
        """
        Initialize the notifier.

        Args:
            bot_token: Telegram Bot API token from @BotFather
            allowed_users: Chat ids that may receive messages (None allows all)
            send_timeout: Seconds to wait for a send to complete
            is_paired: Lookup admitting chats that redeemed a pairing code
        """
        self.bot_token = bot_token
        self.allowed_users = set(allowed_users) if allowed_users is not None else None
        self.send_timeout = send_timeout
        self.is_paired = is_paired

    def may_message(self, chat_id: int) -> bool:
        """True if the chat is allowed or paired (always True without an allow list)."""
        if self.allowed_users is None or chat_id in self.allowed_users:
            return True
        return self.is_paired is not None and self.is_paired(chat_id)

    def is_available(self) -> bool:
        """True if a bot token is configured."""
        return bool(self.bot_token)

    def _make_bot(self) -> Bot:
        return Bot(token=self.bot_token)

    async def _send_async(self, chat_id: int, text: str, parse_mode: Optional[str]) -> TelegramResult:
        try:
            async with self._make_bot() as bot:
                sent = await bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)
            return TelegramResult(
                success=True,
                message="Message sent successfully",
                chat_id=chat_id,
                message_id=sent.message_id,
            )
        except TelegramError as e:
            log_error(f"Telegram API error: {e}")
            return TelegramResult(success=False, message=f"Telegram API error: {e}", chat_id=chat_id)

    def send(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> TelegramResult:
        """
        Send a message and wait for the result.

        Returns:
            TelegramResult with send status (never raises for API errors)
        """
        if not self.bot_token:
            log_error("Telegram notifier unavailable - no bot token configured")
            return TelegramResult(success=False, message="Telegram bot token not configured", chat_id=chat_id)

        if not self.may_message(chat_id):
            log_warning(f"Refusing to message chat {chat_id} (not an allowed user)")
            return TelegramResult(success=False, message="Chat is not an allowed user", chat_id=chat_id)

        loop = asyncio.new_event_loop()
        try:
            result = loop.run_until_complete(
                asyncio.wait_for(self._send_async(chat_id, text, parse_mode), timeout=self.send_timeout)
            )
        except asyncio.TimeoutError:
            log_error(f"Telegram send to {chat_id} timed out after {self.send_timeout:.0f}s")
            result = TelegramResult(success=False, message="Send timed out", chat_id=chat_id)
        finally:
            loop.close()

        if result.success:
            log_success(f"Telegram message sent to {chat_id}")
        return result

    def send_html(self, chat_id: int, text: str) -> None:
        """
        Send an HTML formatted message.

        Raises:
            TelegramDeliveryError: If the message was not delivered
        """
        result = self.send(chat_id, text, parse_mode=ParseMode.HTML)
        if not result.success:
            raise TelegramDeliveryError(result.message)


# Singleton instance
_notifier: Optional[TelegramNotifier] = None


def get_telegram_notifier() -> TelegramNotifier:
    """
    Get the global Telegram notifier.

    Lazily initializes the notifier from config if not already initialized.
    """
    global _notifier
    if _notifier is None:
        _notifier = init_telegram_notifier()
    return _notifier


def init_telegram_notifier(
    bot_token: Optional[str] = None,
    is_paired: Optional[Callable[[int], bool]] = None,
) -> TelegramNotifier:
    """Initialize the global Telegram notifier from config."""
    global _notifier

    from config import TELEGRAM_BOT_TOKEN, TELEGRAM_ALLOWED_USERS, TELEGRAM_SEND_TIMEOUT

    _notifier = TelegramNotifier(
        bot_token=bot_token or TELEGRAM_BOT_TOKEN,
        allowed_users=TELEGRAM_ALLOWED_USERS,
        send_timeout=TELEGRAM_SEND_TIMEOUT,
        is_paired=is_paired,
    )

    if _notifier.is_available():
        log_info(f"Telegram notifier initialized ({len(TELEGRAM_ALLOWED_USERS)} allowed users)", prefix="📨")
    else:
        log_warning("Telegram notifier initialized but not configured (missing bot token)")

    return _notifier
