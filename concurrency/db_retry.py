"""
Chapterwatch - Database Retry Logic
Exponential backoff retry for database operations that hit a busy SQLite file
"""

import time
import sqlite3
from typing import TypeVar, Callable
from functools import wraps

from core.logger import log_warning, log_error

T = TypeVar('T')

RETRYABLE_ERRORS = ("locked", "busy")


class DatabaseRetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def is_retryable(error: sqlite3.OperationalError) -> bool:
    """True for "database is locked" / "database is busy" style errors."""
    message = str(error).lower()
    return any(fragment in message for fragment in RETRYABLE_ERRORS)


def db_retry(
    max_retries: int = 5,
    initial_delay: float = 0.1,
    backoff_multiplier: float = 2.0,
    max_delay: float = 5.0,
):
    """
    Decorator for retrying database operations with exponential backoff.

    Only lock contention is retried; constraint violations and every other
    error propagate on the first attempt.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        backoff_multiplier: Multiplier for each retry
        max_delay: Maximum delay between retries
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            last_error = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    if not is_retryable(e) or attempt >= max_retries:
                        if attempt > 0:
                            log_error(
                                f"Database operation {func.__name__} failed after {attempt + 1} attempts: {e}"
                            )
                        raise

                    last_error = e
                    log_warning(
                        f"Database locked during {func.__name__} "
                        f"(attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)
                    delay = min(delay * backoff_multiplier, max_delay)

            raise DatabaseRetryExhausted(
                f"Max retries ({max_retries}) exhausted. Last error: {last_error}"
            )

        return wrapper
    return decorator
