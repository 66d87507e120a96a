"""
Chapterwatch - Tracking Module
Release store, sync engine, progress tracking and update scheduling.
"""

from tracking.errors import (
    TrackingError,
    WorkNotFoundError,
    DuplicateWorkError,
    UserNotAllowedError,
    SyncTimeoutError,
    PairingError,
    AdminOnlyError,
    InvalidPairingCodeError,
)
from tracking.store import (
    ReleaseStore,
    TrackedWork,
    EntryRecord,
    EntryListItem,
    WorkDetails,
    StoreStatus,
    PairingCode,
)
from tracking.pairing import AccessControl
from tracking.progress import ProgressTracker
from tracking.navigation import ProgressNavigator, NavRequest, MenuView, MODE_READ, MODE_UNREAD
from tracking.sync import SyncEngine, SyncResult, FullSyncResult, NewEntry
from tracking.notifications import NewEntriesNotice, Notifier, format_notice_html, format_notice_text
from tracking.scheduler import UpdateScheduler, get_update_scheduler, init_update_scheduler


__all__ = [
    # Errors
    'TrackingError',
    'WorkNotFoundError',
    'DuplicateWorkError',
    'UserNotAllowedError',
    'SyncTimeoutError',
    'PairingError',
    'AdminOnlyError',
    'InvalidPairingCodeError',
    # Store
    'ReleaseStore',
    'TrackedWork',
    'EntryRecord',
    'EntryListItem',
    'WorkDetails',
    'StoreStatus',
    'PairingCode',
    # Pairing
    'AccessControl',
    # Progress
    'ProgressTracker',
    'ProgressNavigator',
    'NavRequest',
    'MenuView',
    'MODE_READ',
    'MODE_UNREAD',
    # Sync
    'SyncEngine',
    'SyncResult',
    'FullSyncResult',
    'NewEntry',
    # Notifications
    'NewEntriesNotice',
    'Notifier',
    'format_notice_html',
    'format_notice_text',
    # Scheduler
    'UpdateScheduler',
    'get_update_scheduler',
    'init_update_scheduler',
]
