"""
Chapterwatch - Update Scheduler
Background thread that checks every tracked work on a fixed interval and
notifies owners about new entries.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Iterable

from concurrency.deadline import Deadline
from concurrency.locks import LockManager, get_lock_manager, SCHEDULER_LOCK
from core.logger import log_info, log_error, log_warning
from core.temporal import utc_now
from tracking.notifications import Notifier, NewEntriesNotice, format_notice_html
from tracking.store import ReleaseStore
from tracking.sync import SyncEngine, SyncResult

# Default interval: 6 hours
DEFAULT_INTERVAL_SECONDS = 6 * 60 * 60
DEFAULT_RUN_TIMEOUT = 10 * 60


@dataclass
class RunReport:
    """Summary of one scheduled update pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[SyncResult] = field(default_factory=list)
    notices_sent: int = 0
    notices_failed: int = 0

    @property
    def failures(self) -> int:
        return sum(1 for result in self.results if not result.ok)


class UpdateScheduler:
    """
    Periodic update runner.

    Features:
    - Runs as daemon thread: one pass on start (optional), then every interval
    - Passes never overlap; a tick that finds one running is skipped
    - Each pass has its own time budget, cancelled on stop()
    - Only allowed or paired users are notified, and only about works they own
    """

    def __init__(
        self,
        engine: SyncEngine,
        store: ReleaseStore,
        notifier: Optional[Notifier] = None,
        allowed_users: Optional[Iterable[int]] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        run_timeout: float = DEFAULT_RUN_TIMEOUT,
        run_on_start: bool = True,
        lock_manager: Optional[LockManager] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            engine: Sync engine used for the update passes
            store: Store used to record the last run
            notifier: Delivery for new-entry notices (None disables notifications)
            allowed_users: User ids that may receive notifications, in addition
                to users who redeemed a pairing code
            interval_seconds: Seconds between passes
            run_timeout: Time budget of one pass
            run_on_start: Run a pass immediately when started
            lock_manager: Lock manager providing the run guard
        """
        self.engine = engine
        self.store = store
        self.notifier = notifier
        self.allowed_users = {user_id for user_id in (allowed_users or []) if user_id > 0}
        self.interval_seconds = interval_seconds
        self.run_timeout = run_timeout
        self.run_on_start = run_on_start
        self._locks = lock_manager or get_lock_manager()

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._deadline_lock = threading.Lock()
        self._current_deadline: Optional[Deadline] = None
        self.last_report: Optional[RunReport] = None

    def start(self) -> None:
        """Start the scheduler thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._scheduler_loop,
            daemon=True,
            name="UpdateScheduler"
        )
        self._thread.start()
        hours = self.interval_seconds / 3600
        log_info(
            f"Update scheduler started ({'runs now, then ' if self.run_on_start else ''}every {hours:g}h)",
            prefix="⏰"
        )

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the scheduler thread, cancelling a pass in progress."""
        self._stop_event.set()
        with self._deadline_lock:
            if self._current_deadline is not None:
                self._current_deadline.cancel()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        log_info("Update scheduler stopped", prefix="⏰")

    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def _scheduler_loop(self) -> None:
        """Main loop - one pass per interval until stop is requested."""
        if not self.run_on_start:
            self._stop_event.wait(self.interval_seconds)

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                log_error(f"Update scheduler error: {e}")

            # Wait for next interval (or until stop is requested)
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> Optional[RunReport]:
        """
        Run one update pass now.

        Returns:
            The run report, or None if another pass was already running
        """
        if not self._locks.try_acquire(SCHEDULER_LOCK):
            log_info("Scheduled update skipped (previous run still in progress)", prefix="⏰")
            return None

        try:
            report = RunReport(started_at=utc_now())
            deadline = Deadline(self.run_timeout, "scheduled update")
            with self._deadline_lock:
                self._current_deadline = deadline

            log_info("Starting scheduled update", prefix="🔄")
            report.results = self.engine.update_all(deadline=deadline)
            self._notify(report)

            self.store.record_scheduler_run(report.started_at)
            report.finished_at = utc_now()
            self.last_report = report

            log_info(
                f"Scheduled update completed ({len(report.results)} works, "
                f"{report.failures} failed, {report.notices_sent} notices)",
                prefix="🔄"
            )
            return report

        finally:
            with self._deadline_lock:
                self._current_deadline = None
            self._locks.release(SCHEDULER_LOCK)

    def _may_notify(self, user_id: int) -> bool:
        # Read from the store each time; codes are redeemed by other processes
        return user_id in self.allowed_users or self.store.is_paired_user(user_id)

    def _notify(self, report: RunReport) -> None:
        if self.notifier is None:
            return

        for result in report.results:
            if not result.has_new_entries:
                continue
            if not self._may_notify(result.user_id):
                log_warning(f"Not notifying user {result.user_id} (not in allowed users)")
                continue

            notice = NewEntriesNotice.from_result(result)
            try:
                self.notifier.send_html(result.user_id, format_notice_html(notice))
                report.notices_sent += 1
            except Exception as e:
                report.notices_failed += 1
                log_error(f"Error sending new entries notice to {result.user_id}: {e}")


# Global scheduler instance
_update_scheduler: Optional[UpdateScheduler] = None


def get_update_scheduler() -> UpdateScheduler:
    """Get the global update scheduler."""
    if _update_scheduler is None:
        raise RuntimeError("Update scheduler not initialized. Call init_update_scheduler() first.")
    return _update_scheduler


def init_update_scheduler(
    engine: SyncEngine,
    store: ReleaseStore,
    notifier: Optional[Notifier] = None,
    allowed_users: Optional[Iterable[int]] = None,
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    run_timeout: float = DEFAULT_RUN_TIMEOUT,
    run_on_start: bool = True,
) -> UpdateScheduler:
    """Initialize the global update scheduler."""
    global _update_scheduler
    _update_scheduler = UpdateScheduler(
        engine=engine,
        store=store,
        notifier=notifier,
        allowed_users=allowed_users,
        interval_seconds=interval_seconds,
        run_timeout=run_timeout,
        run_on_start=run_on_start,
    )
    return _update_scheduler
