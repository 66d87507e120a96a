"""
Chapterwatch - Communication Module
Outbound delivery of new-entry notices.
"""

from communication.telegram_notifier import (
    TelegramNotifier,
    TelegramResult,
    TelegramDeliveryError,
    get_telegram_notifier,
    init_telegram_notifier,
)


__all__ = [
    'TelegramNotifier',
    'TelegramResult',
    'TelegramDeliveryError',
    'get_telegram_notifier',
    'init_telegram_notifier',
]
