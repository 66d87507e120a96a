"""
Chapterwatch - Deadlines
Monotonic time budgets passed down through long-running operations.

A Deadline is checked between feed pages and caps each HTTP attempt and
each backoff sleep, so an expired budget stops work at the next boundary
without interrupting a database write half way.
"""

import threading
import time
from typing import Optional


class DeadlineExceeded(Exception):
    """Raised when an operation runs past its time budget."""

    def __init__(self, operation: str, budget: float):
        self.operation = operation
        self.budget = budget
        super().__init__(f"{operation} exceeded its {budget:.0f}s time budget")


class Deadline:
    """A point in monotonic time after which work should stop."""

    def __init__(self, seconds: float, operation: str = "operation"):
        self.budget = float(seconds)
        self.operation = operation
        self._expires_at = time.monotonic() + self.budget
        self._cancelled = threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        """A deadline that never expires on its own (it can still be cancelled)."""
        return cls(float("inf"), "unbounded")

    def remaining(self) -> float:
        """Seconds left (0 when expired or cancelled)."""
        if self._cancelled.is_set():
            return 0.0
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def cancel(self) -> None:
        """Expire the deadline immediately (e.g. on shutdown)."""
        self._cancelled.set()

    def check(self) -> None:
        """Raise DeadlineExceeded if the budget is used up."""
        if self.expired:
            raise DeadlineExceeded(self.operation, self.budget)

    def cap(self, seconds: float) -> float:
        """Clamp a per-step timeout to what is left of the budget."""
        return min(seconds, self.remaining())

    def sleep(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on cancellation or expiry.

        Returns:
            True if the full sleep elapsed, False if the deadline cut it short
        """
        if seconds <= 0:
            return True
        wait = self.cap(seconds)
        if self._cancelled.wait(wait):
            return False
        return wait >= seconds


def deadline_or_none(deadline: Optional[Deadline]) -> Deadline:
    """Normalise an optional deadline argument."""
    return deadline if deadline is not None else Deadline.none()
