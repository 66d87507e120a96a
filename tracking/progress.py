"""
Chapterwatch - Progress Tracker
Read position per work: mark read, mark unread, mark everything read.

The read position is a single number. Marking an entry read only ever
raises it; marking an entry unread moves it down to the closest stored
numeric entry below. Non-numeric keys (extras) are ignored by both.
"""

from typing import Optional

from core.entry_keys import parse_numeric_key, format_position
from core.logger import log_info, log_debug
from tracking.store import ReleaseStore, EntryListItem


class ProgressTracker:
    """Read/unread operations over the release store."""

    def __init__(self, store: ReleaseStore):
        self.store = store

    def mark_read(self, work_id: int, key: str) -> int:
        """
        Mark an entry (and everything below it) as read.

        Returns:
            The work's unread count after the update
        """
        value = parse_numeric_key(key)
        if value is None:
            log_debug(f"Ignoring mark read of non-numeric key {key!r} (work {work_id})")
            return self._current_unread(work_id)

        unread = self.store.ratchet_read_position(work_id, value)
        position = self.store.require_work(work_id).last_read_number
        log_info(f"Work {work_id}: read up to {format_position(position)} ({unread} unread)", prefix="📖")
        return unread

    def mark_unread(self, work_id: int, key: str) -> int:
        """
        Mark an entry (and everything above it) as unread.

        Returns:
            The work's unread count after the update
        """
        value = parse_numeric_key(key)
        if value is None:
            log_debug(f"Ignoring mark unread of non-numeric key {key!r} (work {work_id})")
            return self._current_unread(work_id)

        unread = self.store.retract_read_position(work_id, value)
        position = self.store.require_work(work_id).last_read_number
        log_info(
            f"Work {work_id}: unread from {format_position(value)}, "
            f"position now {format_position(position)} ({unread} unread)",
            prefix="📖"
        )
        return unread

    def mark_all_read(self, work_id: int) -> int:
        """Mark every numeric entry as read. Returns the unread count (0 unless empty)."""
        unread = self.store.mark_all_read(work_id)
        log_info(f"Work {work_id}: marked all read", prefix="📖")
        return unread

    def last_read_entry(self, work_id: int) -> Optional[EntryListItem]:
        """Entry at (or just below) the read position, for display."""
        self.store.require_work(work_id)
        return self.store.last_read_entry(work_id)

    def _current_unread(self, work_id: int) -> int:
        return self.store.require_work(work_id).unread_count
