"""
Chapterwatch - Lock Management
Named locks with acquisition tracking and statistics.

The "database" lock is the single-writer guard for the SQLite store: every
write (and every read-then-write sequence that must be atomic) runs inside
``acquire("database")``. It is reentrant so a store operation can call
another store write while already holding it.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Any

from core.logger import log_section, log_subsection

DATABASE_LOCK = "database"
SCHEDULER_LOCK = "scheduler"
CATALOG_SEMAPHORE = "catalog_requests"


@dataclass
class LockStats:
    """Statistics for a single lock."""
    acquisitions: int = 0
    contentions: int = 0  # Times lock was already held by another thread
    total_wait_time: float = 0.0
    total_hold_time: float = 0.0
    max_wait_time: float = 0.0
    max_hold_time: float = 0.0
    last_acquired: Optional[datetime] = None
    last_released: Optional[datetime] = None


class LockManager:
    """
    Manages named locks with monitoring and statistics.

    Provides thread-safe access to shared resources with
    detailed tracking for debugging lock contention.
    """

    def __init__(self, catalog_concurrency: int = 2):
        self._locks: Dict[str, Any] = {}
        self._semaphores: Dict[str, threading.Semaphore] = {}
        self._stats: Dict[str, LockStats] = defaultdict(LockStats)
        self._meta_lock = threading.Lock()  # Protects the dictionaries
        self._holders: Dict[str, Optional[int]] = {}  # lock_name -> thread id
        self._depth: Dict[str, int] = defaultdict(int)  # reentrant depth of current holder

        self._locks[DATABASE_LOCK] = threading.RLock()
        self._locks[SCHEDULER_LOCK] = threading.Lock()
        self._semaphores[CATALOG_SEMAPHORE] = threading.Semaphore(catalog_concurrency)

        for name in list(self._locks) + list(self._semaphores):
            self._stats[name] = LockStats()

    def _lookup(self, lock_name: str):
        with self._meta_lock:
            if lock_name in self._locks:
                return self._locks[lock_name]
            if lock_name in self._semaphores:
                return self._semaphores[lock_name]
        raise KeyError(f"Unknown lock: {lock_name}")

    @contextmanager
    def acquire(self, lock_name: str, timeout: Optional[float] = None):
        """
        Acquire a named lock or semaphore for the duration of a with-block.

        Args:
            lock_name: Name of the lock to acquire
            timeout: Optional timeout in seconds

        Raises:
            TimeoutError: If timeout expires before the lock is acquired
            KeyError: If lock_name doesn't exist
        """
        lock = self._lookup(lock_name)
        thread_id = threading.get_ident()
        start_wait = time.monotonic()

        with self._meta_lock:
            holder = self._holders.get(lock_name)
            if holder is not None and holder != thread_id:
                self._stats[lock_name].contentions += 1

        if timeout is not None:
            if not lock.acquire(timeout=timeout):
                raise TimeoutError(f"Timeout waiting for lock: {lock_name}")
        else:
            lock.acquire()

        acquired_at = time.monotonic()
        wait_time = acquired_at - start_wait

        with self._meta_lock:
            stats = self._stats[lock_name]
            stats.acquisitions += 1
            stats.total_wait_time += wait_time
            stats.max_wait_time = max(stats.max_wait_time, wait_time)
            stats.last_acquired = datetime.now()
            self._holders[lock_name] = thread_id
            self._depth[lock_name] += 1

        try:
            yield
        finally:
            hold_time = time.monotonic() - acquired_at
            with self._meta_lock:
                stats = self._stats[lock_name]
                stats.total_hold_time += hold_time
                stats.max_hold_time = max(stats.max_hold_time, hold_time)
                stats.last_released = datetime.now()
                self._depth[lock_name] -= 1
                if self._depth[lock_name] <= 0:
                    self._depth[lock_name] = 0
                    self._holders[lock_name] = None
            lock.release()

    def try_acquire(self, lock_name: str) -> bool:
        """
        Non-blocking acquire for run-once guards.

        The caller must call release() when the result is True.
        """
        lock = self._lookup(lock_name)
        if not lock.acquire(blocking=False):
            with self._meta_lock:
                self._stats[lock_name].contentions += 1
            return False
        with self._meta_lock:
            self._stats[lock_name].acquisitions += 1
            self._stats[lock_name].last_acquired = datetime.now()
        return True

    def release(self, lock_name: str) -> None:
        """Release a lock taken with try_acquire()."""
        lock = self._lookup(lock_name)
        with self._meta_lock:
            self._stats[lock_name].last_released = datetime.now()
        lock.release()

    def is_held(self, lock_name: str) -> bool:
        """Check whether any thread currently holds the lock via acquire()."""
        with self._meta_lock:
            return self._holders.get(lock_name) is not None

    def get_stats(self, lock_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Get statistics for locks.

        Args:
            lock_name: Specific lock name, or None for all locks

        Returns:
            Dict of lock statistics
        """
        with self._meta_lock:
            names = [lock_name] if lock_name else list(self._stats)
            result = {}
            for name in names:
                if name not in self._stats:
                    continue
                stats = self._stats[name]
                result[name] = {
                    "acquisitions": stats.acquisitions,
                    "contentions": stats.contentions,
                    "avg_wait_time": stats.total_wait_time / max(stats.acquisitions, 1),
                    "max_wait_time": stats.max_wait_time,
                    "avg_hold_time": stats.total_hold_time / max(stats.acquisitions, 1),
                    "max_hold_time": stats.max_hold_time,
                    "currently_held": self._holders.get(name) is not None,
                }
            if lock_name:
                return result.get(lock_name, {})
            return result

    def log_stats(self) -> None:
        """Log current lock statistics."""
        stats = self.get_stats()

        log_section("Lock Statistics", "🔒")

        for name, data in stats.items():
            if data["acquisitions"] > 0:
                log_subsection(
                    f"{name}: {data['acquisitions']} acq, "
                    f"{data['contentions']} contentions, "
                    f"avg wait {data['avg_wait_time'] * 1000:.1f}ms, "
                    f"avg hold {data['avg_hold_time'] * 1000:.1f}ms"
                )


# Global lock manager instance
_lock_manager: Optional[LockManager] = None


def get_lock_manager() -> LockManager:
    """Get the global lock manager instance."""
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = LockManager()
    return _lock_manager


def init_lock_manager(catalog_concurrency: int = 2) -> LockManager:
    """Initialize the global lock manager."""
    global _lock_manager
    _lock_manager = LockManager(catalog_concurrency=catalog_concurrency)
    return _lock_manager
