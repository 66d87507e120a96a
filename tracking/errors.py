"""
Chapterwatch - Tracking Errors
Exceptions raised by the store, sync engine and progress tracker.
"""

from concurrency.deadline import DeadlineExceeded


class TrackingError(Exception):
    """Base class for tracking failures."""


class WorkNotFoundError(TrackingError, LookupError):
    """No tracked work with the given id."""

    def __init__(self, work_id: int):
        super().__init__(f"Tracked work {work_id} not found")
        self.work_id = work_id


class DuplicateWorkError(TrackingError):
    """The user already tracks this catalog work."""

    def __init__(self, user_id: int, external_id: str, work_id: int):
        super().__init__(f"User {user_id} already tracks {external_id} (work {work_id})")
        self.user_id = user_id
        self.external_id = external_id
        self.work_id = work_id


class UserNotAllowedError(TrackingError, PermissionError):
    """The user is not in the configured allow list."""

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} is not allowed")
        self.user_id = user_id


class SyncTimeoutError(TrackingError, DeadlineExceeded):
    """A sync ran out of time; pages already written stay committed."""

    def __init__(self, work_id: int, operation: str, budget: float):
        DeadlineExceeded.__init__(self, operation, budget)
        self.work_id = work_id


class PairingError(TrackingError):
    """A pairing code could not be issued or redeemed."""


class AdminOnlyError(PairingError, PermissionError):
    """Only the configured admin may issue pairing codes."""

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} is not the admin")
        self.user_id = user_id


class InvalidPairingCodeError(PairingError, ValueError):
    """The code is malformed, unknown, expired or already used."""

    def __init__(self, code: str, reason: str):
        super().__init__(f"Pairing code {code!r} {reason}")
        self.code = code
        self.reason = reason
