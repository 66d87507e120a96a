"""
Tests for the sync engine against a fake catalog.

The fake serves a fixed feed (newest first) and honours limit/offset, so
paging, watermark cutoff and language preference all run for real against
a temporary SQLite store.
"""

import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

from catalog.client import CatalogClient
from catalog.errors import CatalogNotFoundError, CatalogUnavailableError, InvalidWorkUrlError
from catalog.models import FeedEntry, FeedPage, WorkInfo
from concurrency.deadline import Deadline
from concurrency.locks import LockManager
from core.database import Database
from tracking.errors import SyncTimeoutError, UserNotAllowedError
from tracking.store import ReleaseStore
from tracking.sync import SyncEngine, language_score, select_representatives

T = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
WORK_UUID = "0f3a1b2c-3d4e-4f50-8a6b-7c8d9e0f1a2b"


def entry(source_id, chapter, at, language="en", title=""):
    return FeedEntry(source_id=source_id, chapter=chapter, title=title, language=language, created_at=at)


class FakeCatalog:
    """Serves a newest-first feed per external id."""

    def __init__(self, feeds=None):
        self.feeds = feeds or {}
        self.calls = []
        self.client = MagicMock(spec=CatalogClient)
        self.client.fetch_entries.side_effect = self.fetch_entries

    def fetch_entries(self, external_id, limit=100, offset=0, languages=None, deadline=None):
        self.calls.append({"offset": offset, "limit": limit, "languages": languages})
        feed = self.feeds.get(external_id, [])
        return FeedPage(entries=feed[offset:offset + limit], total=len(feed), limit=limit, offset=offset)


class SyncTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        db = Database(Path(self._tmp.name) / "sync.db", lock_manager=LockManager())
        db.initialize()
        self.store = ReleaseStore(db)
        self.catalog = FakeCatalog()
        self.engine = SyncEngine(
            self.store,
            self.catalog.client,
            preferred_languages=["fr", "en"],
            sync_languages=["fr", "en", "es"],
            incremental_page_size=2,
            full_page_size=2,
        )
        self.work = self.store.add_work(1, "ext-1", "Some Work")

    def tearDown(self):
        self._tmp.cleanup()

    def keys(self):
        return sorted(item.key for item in self.store.list_entries(self.work.id))


class TestLanguagePreference(unittest.TestCase):

    def test_score_order(self):
        preferred = ["fr", "en"]
        self.assertLess(language_score("fr", preferred), language_score("en", preferred))
        self.assertLess(language_score("en", preferred), language_score("es", preferred))
        self.assertLess(language_score("es", preferred), language_score("", preferred))

    def test_titled_entry_beats_untitled_at_equal_rank(self):
        winners, changed = select_representatives(
            [entry("a", "5", T), entry("b", "5", T, title="Named")], ["en"]
        )
        self.assertEqual(winners["5"].source_id, "b")
        self.assertEqual(changed, ["5"])

    def test_first_seen_wins_a_full_tie(self):
        winners, _ = select_representatives(
            [entry("a", "5", T, title="A"), entry("b", "5", T, title="B")], ["en"]
        )
        self.assertEqual(winners["5"].title, "A")


class TestIncrementalUpdate(SyncTestCase):

    def test_stops_at_watermark(self):
        self.store.set_high_watermark(self.work.id, T)
        self.catalog.feeds["ext-1"] = [
            entry("d", "4", T + timedelta(minutes=2)),
            entry("c", "3", T + timedelta(minutes=1)),
            entry("b", "2", T),
            entry("a", "1", T - timedelta(minutes=1)),
        ]
        result = self.engine.update_one(self.work.id)

        self.assertEqual([e.key for e in result.new_entries], ["4", "3"])
        self.assertEqual(self.keys(), ["3", "4"])
        work = self.store.require_work(self.work.id)
        self.assertEqual(work.last_seen_at, T + timedelta(minutes=2))
        self.assertEqual(work.unread_count, 2)
        self.assertIsNotNone(work.last_checked)
        # Cutoff reached on the second page, so nothing beyond it was requested
        self.assertEqual([call["offset"] for call in self.catalog.calls], [0, 2])

    def test_first_check_takes_everything(self):
        self.catalog.feeds["ext-1"] = [entry("b", "2", T), entry("a", "1", T - timedelta(hours=1))]
        result = self.engine.update_one(self.work.id)
        self.assertEqual(len(result.new_entries), 2)
        self.assertEqual(self.store.require_work(self.work.id).last_seen_at, T)

    def test_new_entry_title_matches_stored_title(self):
        self.catalog.feeds["ext-1"] = [
            entry("b", "2", T, language="es", title="Segundo"),
            entry("a", "1", T - timedelta(hours=1), language="en", title="First"),
        ]
        result = self.engine.update_one(self.work.id)

        titles = {e.key: e.title for e in result.new_entries}
        self.assertEqual(titles, {"2": "", "1": "First"})
        stored = {item.key: item.title for item in self.store.list_entries(self.work.id)}
        self.assertEqual(stored, titles)

    def test_nothing_new(self):
        self.store.set_high_watermark(self.work.id, T)
        self.catalog.feeds["ext-1"] = [entry("a", "1", T)]
        result = self.engine.update_one(self.work.id)
        self.assertFalse(result.has_new_entries)
        self.assertEqual(self.keys(), [])

    def test_failed_page_writes_nothing(self):
        feed = [entry(str(i), str(i), T + timedelta(minutes=i)) for i in range(4, 0, -1)]

        def fetch(external_id, limit=100, offset=0, languages=None, deadline=None):
            if offset > 0:
                raise CatalogUnavailableError("down")
            return FeedPage(entries=feed[:limit], total=len(feed), limit=limit, offset=offset)

        self.catalog.client.fetch_entries.side_effect = fetch
        with self.assertRaises(CatalogUnavailableError):
            self.engine.update_one(self.work.id)
        self.assertEqual(self.keys(), [])
        work = self.store.require_work(self.work.id)
        self.assertIsNone(work.last_seen_at)
        self.assertIsNone(work.last_checked)

    def test_expired_deadline(self):
        self.catalog.feeds["ext-1"] = [entry("a", "1", T)]
        with self.assertRaises(SyncTimeoutError) as ctx:
            self.engine.update_one(self.work.id, deadline=Deadline(0, "check"))
        self.assertEqual(ctx.exception.work_id, self.work.id)
        self.assertEqual(self.keys(), [])

    def test_update_all_isolates_failures(self):
        broken = self.store.add_work(2, "missing", "Gone Work")
        self.catalog.feeds["ext-1"] = [entry("a", "1", T)]

        def fetch(external_id, limit=100, offset=0, languages=None, deadline=None):
            if external_id == "missing":
                raise CatalogNotFoundError("gone", status_code=404)
            return self.catalog.fetch_entries(external_id, limit, offset, languages, deadline)

        self.catalog.client.fetch_entries.side_effect = fetch
        results = {r.work_id: r for r in self.engine.update_all()}

        self.assertTrue(results[self.work.id].has_new_entries)
        self.assertFalse(results[broken.id].ok)
        self.assertIsInstance(results[broken.id].error, CatalogNotFoundError)


class TestFullSync(SyncTestCase):

    def test_language_preference_and_extras(self):
        self.catalog.feeds["ext-1"] = [
            entry("x1", "", T + timedelta(minutes=9), title="Side story"),
            entry("x2", "", T + timedelta(minutes=8)),
            entry("en5", "5", T + timedelta(minutes=7), "en", "English"),
            entry("es5", "5", T + timedelta(minutes=6), "es", "Spanish"),
            entry("fr5", "5", T + timedelta(minutes=5), "fr", "French"),
            entry("es6", "6", T + timedelta(minutes=4), "es", "Solo"),
        ]
        result = self.engine.sync_all(self.work.id)

        self.assertEqual(result.synced, 4)
        self.assertEqual(self.keys(), ["5", "6", "extra:x1", "extra:x2"])
        titles = {item.key: item.title for item in self.store.list_entries(self.work.id)}
        self.assertEqual(titles["5"], "French")
        self.assertEqual(titles["6"], "")
        self.assertEqual(result.unread_count, 2)
        self.assertEqual(result.last_seen_at, T + timedelta(minutes=9))
        self.assertEqual(self.catalog.calls[0]["languages"], ["fr", "en", "es"])

    def test_idempotent(self):
        self.catalog.feeds["ext-1"] = [entry(str(i), str(i), T + timedelta(minutes=i)) for i in range(5, 0, -1)]
        first = self.engine.sync_all(self.work.id)
        before = [(i.key, i.title) for i in self.store.list_entries(self.work.id)]
        second = self.engine.sync_all(self.work.id)

        self.assertEqual(first.synced, second.synced)
        self.assertEqual(before, [(i.key, i.title) for i in self.store.list_entries(self.work.id)])
        self.assertEqual(self.store.require_work(self.work.id).unread_count, 5)

    def test_keeps_read_position(self):
        self.catalog.feeds["ext-1"] = [entry(str(i), str(i), T + timedelta(minutes=i)) for i in range(3, 0, -1)]
        self.engine.sync_all(self.work.id)
        self.store.ratchet_read_position(self.work.id, 2)
        self.assertEqual(self.engine.sync_all(self.work.id).unread_count, 1)

    def test_timeout_keeps_completed_pages(self):
        feed = [entry(str(i), str(i), T + timedelta(minutes=i)) for i in range(4, 0, -1)]

        def fetch(external_id, limit=100, offset=0, languages=None, deadline=None):
            page = FeedPage(entries=feed[offset:offset + limit], total=len(feed), limit=limit, offset=offset)
            deadline.cancel()
            return page

        self.catalog.client.fetch_entries.side_effect = fetch
        with self.assertRaises(SyncTimeoutError):
            self.engine.sync_all(self.work.id)

        work = self.store.require_work(self.work.id)
        self.assertEqual(self.keys(), ["3", "4"])
        self.assertEqual(work.unread_count, 2)
        self.assertIsNone(work.last_seen_at)

    def test_empty_feed_completes_in_thread(self):
        """A full sync from a worker thread must not wait on a lock it already holds."""
        outcome = {}

        def run():
            outcome["result"] = self.engine.sync_all(self.work.id)

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        worker.join(timeout=10)

        self.assertFalse(worker.is_alive())
        self.assertEqual(outcome["result"].synced, 0)
        self.assertIsNotNone(self.store.require_work(self.work.id).last_checked)


class TestTrackWork(SyncTestCase):

    def setUp(self):
        super().setUp()
        self.catalog.client.get_work.return_value = WorkInfo(WORK_UUID, {"ja": "Nihongo", "en": "English Title"})
        self.url = f"https://example.org/title/{WORK_UUID}/some-slug"

    def test_track_and_backfill(self):
        self.catalog.feeds[WORK_UUID] = [entry("a", "1", T)]
        work, result = self.engine.track_work(5, self.url)
        self.assertEqual(work.title, "English Title")
        self.assertEqual(work.external_id, WORK_UUID)
        self.assertEqual(result.synced, 1)

    def test_without_backfill(self):
        work, result = self.engine.track_work(5, self.url, alternate_channel=True, backfill=False)
        self.assertIsNone(result)
        self.assertTrue(work.alternate_channel)

    def test_user_not_allowed(self):
        with self.assertRaises(UserNotAllowedError):
            self.engine.track_work(5, self.url, allowed_users=[1, 2])
        self.catalog.client.get_work.assert_not_called()

    def test_invalid_url(self):
        with self.assertRaises(InvalidWorkUrlError):
            self.engine.track_work(5, "https://example.org/chapter/123")


if __name__ == "__main__":
    unittest.main()
