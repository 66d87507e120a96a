"""
Chapterwatch - Pairing
Admin-issued pairing codes and the combined allow list they feed.

Users are allowed either through the configured allow list or by
redeeming a pairing code. Only the admin (the first configured user)
may issue codes.
"""

from typing import Optional, List, Iterable

from core.logger import log_warning
from tracking.errors import AdminOnlyError, PairingError
from tracking.store import ReleaseStore, PairingCode, DEFAULT_PAIRING_TTL_HOURS


class AccessControl:
    """
    Who may track works and receive notifications.

    An empty configured allow list means the deployment is unrestricted;
    pairing then has nothing to add.
    """

    def __init__(
        self,
        store: ReleaseStore,
        admin_user: int = 0,
        allowed_users: Optional[Iterable[int]] = None,
        ttl_hours: float = DEFAULT_PAIRING_TTL_HOURS,
    ):
        self.store = store
        self.admin_user = admin_user
        self.configured_users = {user_id for user_id in (allowed_users or []) if user_id > 0}
        self.ttl_hours = ttl_hours

    @property
    def restricted(self) -> bool:
        return bool(self.configured_users)

    def is_admin(self, user_id: int) -> bool:
        return self.admin_user > 0 and user_id == self.admin_user

    def is_allowed(self, user_id: int) -> bool:
        if not self.restricted:
            return True
        return user_id in self.configured_users or self.store.is_paired_user(user_id)

    def allowed_user_ids(self) -> Optional[List[int]]:
        """Configured plus paired users, or None when unrestricted."""
        if not self.restricted:
            return None
        return sorted(self.configured_users.union(self.store.list_paired_users()))

    def issue_code(self, requested_by: int) -> PairingCode:
        """
        Create a pairing code on behalf of the admin.

        Raises:
            AdminOnlyError: If requested_by is not the admin
        """
        if not self.is_admin(requested_by):
            log_warning(f"User {requested_by} asked for a pairing code but is not the admin")
            raise AdminOnlyError(requested_by)
        return self.store.create_pairing_code(requested_by, ttl_hours=self.ttl_hours)

    def redeem_code(self, user_id: int, code: str) -> PairingCode:
        """
        Admit a user with a pairing code.

        Raises:
            PairingError: If the user is already allowed
            InvalidPairingCodeError: Malformed, unknown, used or expired code
        """
        if self.restricted and self.is_allowed(user_id):
            raise PairingError(f"User {user_id} is already allowed")
        return self.store.redeem_pairing_code(code, user_id)
