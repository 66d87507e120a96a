"""
Tests for range-bucketed progress navigation.

Views collapse single-bucket levels, so the interesting cases are the
chapter sets that skip levels and where Back lands afterwards.
"""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from concurrency.locks import LockManager
from core.database import Database
from tracking.navigation import (
    ProgressNavigator,
    NavRequest,
    MODE_READ,
    MODE_UNREAD,
    STATUS_UP_TO_DATE,
    STATUS_NOTHING_READ,
    VIEW_BUCKETS,
    VIEW_EMPTY,
    VIEW_ENTRIES,
    bucket_start,
    bucket_label,
    decode_action,
    encode_action,
)
from tracking.store import ReleaseStore, EntryRecord

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestBucketArithmetic(unittest.TestCase):

    def test_lowest_bucket_is_labelled_one(self):
        self.assertEqual(bucket_start(5, 1000, 1), 1)
        self.assertEqual(bucket_start(999, 1000, 1), 1)
        self.assertEqual(bucket_start(1000, 1000, 1), 1000)
        self.assertEqual(bucket_start(1150, 100, 1000), 1100)

    def test_labels(self):
        self.assertEqual(bucket_label(1, 1000), "1-999")
        self.assertEqual(bucket_label(2000, 1000), "2000-2999")
        self.assertEqual(bucket_label(1110, 10), "1110-1119")


class TestCallbacks(unittest.TestCase):
    """Callback encoding for stateless navigation."""

    def test_encode(self):
        request = NavRequest(MODE_UNREAD, 12, 100, 1100, 0)
        self.assertEqual(request.encode(), "nav:u:12:100:1100:0")

    def test_decode_inverts_encode(self):
        request = NavRequest(MODE_READ, 7, 10, 1230, 3)
        self.assertEqual(NavRequest.decode(request.encode()), request)

    def test_decode_rejects_garbage(self):
        for data in ("", "foo", "nav:x:1:0:0:0", "nav:u:a:0:0:0", "nav:u:1:50:0:0", "nav:u:1:0:0"):
            with self.assertRaises(ValueError, msg=data):
                NavRequest.decode(data)

    def test_callbacks_fit_telegram_limit(self):
        request = NavRequest(MODE_READ, 10 ** 12, 1000, 10 ** 17, 999)
        self.assertLessEqual(len(request.encode().encode("utf-8")), 64)

    def test_entry_actions(self):
        data = encode_action("mr", 12, "105.5")
        self.assertEqual(data, "mr:12:105.5")
        self.assertEqual(decode_action(data), ("mr", 12, "105.5"))
        with self.assertRaises(ValueError):
            decode_action("nav:u:1:0:0:0")


class NavigationTestCase(unittest.TestCase):
    """Shared fixture: one work, entries added per test."""

    threshold = 2

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        db = Database(Path(self._tmp.name) / "nav.db", lock_manager=LockManager())
        db.initialize()
        self.store = ReleaseStore(db)
        self.work = self.store.add_work(1, "abc", "Some Work")
        self.nav = ProgressNavigator(self.store, direct_list_threshold=self.threshold, entry_page_size=2)

    def tearDown(self):
        self._tmp.cleanup()

    def add(self, *keys):
        self.store.record_sync(self.work.id, [
            EntryRecord(key=key, title=f"T{key}", created_at=T0 + timedelta(minutes=i))
            for i, key in enumerate(keys)
        ])

    def browse(self, size=0, start=0, mode=MODE_UNREAD, page=0):
        return self.nav.browse(NavRequest(mode, self.work.id, size, start, page))


class TestCollapsing(NavigationTestCase):
    """Levels with a single bucket are skipped."""

    def test_three_thousands(self):
        self.add("1", "1000", "2000")
        view = self.browse()
        self.assertEqual(view.kind, VIEW_BUCKETS)
        self.assertTrue(view.is_root)
        self.assertEqual([c.label for c in view.choices], ["1-999", "1000-1999", "2000-2999"])
        self.assertIsNone(view.back)

    def test_single_chapter_bucket_goes_straight_to_entries(self):
        self.add("1", "1000", "2000")
        view = self.browse(1000, 1000)
        self.assertEqual(view.kind, VIEW_ENTRIES)
        self.assertEqual(view.identity, (10, 1000))
        self.assertEqual([c.key for c in view.choices], ["1000"])
        self.assertTrue(view.back.is_root)

    def test_single_thousand_shows_hundreds_at_root(self):
        self.add("1", "100", "200", "900")
        view = self.browse()
        self.assertEqual(view.identity, (1000, 1))
        self.assertEqual([c.label for c in view.choices], ["1-99", "100-199", "200-299", "900-999"])
        self.assertIsNone(view.back)

    def test_back_skips_collapsed_ancestors(self):
        self.add("1", "100", "200", "900")
        view = self.browse(100, 100)
        self.assertEqual(view.identity, (10, 100))
        self.assertEqual((view.back.bucket_size, view.back.bucket_start), (1000, 1))

    def test_lowest_hundred(self):
        self.add("1", "100", "200", "900")
        view = self.browse(100, 1)
        self.assertEqual(view.identity, (10, 1))
        self.assertEqual([c.key for c in view.choices], ["1"])

    def test_collapse_to_tens(self):
        self.add("1100", "1101", "1110")
        view = self.browse()
        self.assertEqual(view.kind, VIEW_BUCKETS)
        self.assertEqual(view.identity, (100, 1100))
        self.assertEqual([c.label for c in view.choices], ["1100-1109", "1110-1119"])
        self.assertIsNone(view.back)

    def test_choice_callbacks_decode_to_their_requests(self):
        self.add("1", "1000", "2000")
        for choice in self.browse().choices:
            self.assertEqual(NavRequest.decode(choice.callback), choice.request)

    def test_values_below_one_fall_back_to_direct_list(self):
        """Chapter 0 never lands in a bucket, so it stays reachable from the direct list."""
        self.add("0", "0.25", "0.5")
        view = self.browse()
        self.assertEqual(view.kind, VIEW_ENTRIES)
        self.assertEqual([c.key for c in view.choices], ["0", "0.25", "0.5"])

    def test_stale_bucket_falls_back_to_root(self):
        self.add("1", "1000", "2000")
        view = self.browse(1000, 5000)
        self.assertTrue(view.is_root)
        self.assertEqual(len(view.choices), 3)


class TestEntryPages(NavigationTestCase):

    def test_entries_are_paged(self):
        self.add("1001", "1002", "1003", "1004", "1005")
        view = self.browse()
        self.assertEqual(view.identity, (10, 1000))
        self.assertEqual(view.page_count, 3)
        self.assertEqual([c.key for c in view.choices], ["1001", "1002"])
        self.assertIsNone(view.prev_page)

        second = self.nav.browse(view.next_page)
        self.assertEqual([c.key for c in second.choices], ["1003", "1004"])
        self.assertIsNotNone(second.prev_page)

    def test_page_is_clamped(self):
        self.add("1001", "1002", "1003")
        view = self.browse(10, 1000, page=9)
        self.assertEqual(view.page, 1)
        self.assertEqual([c.key for c in view.choices], ["1003"])


class TestDirectList(NavigationTestCase):

    threshold = 10

    def test_small_sets_are_listed_directly(self):
        self.add("1", "1000", "2000", "extra:x")
        view = self.browse()
        self.assertEqual(view.kind, VIEW_ENTRIES)
        self.assertEqual([c.key for c in view.choices], ["1", "1000", "2000"])
        self.assertEqual(view.choices[0].callback, f"mr:{self.work.id}:1")
        self.assertEqual(view.choices[0].label, "Ch. 1 - T1")

    def test_read_mode_lists_descending_with_unread_actions(self):
        self.add("1", "2", "3")
        self.store.ratchet_read_position(self.work.id, 2)
        view = self.browse(mode=MODE_READ)
        self.assertEqual([c.key for c in view.choices], ["2", "1"])
        self.assertTrue(view.choices[0].callback.startswith("mu:"))
        self.assertEqual(view.last_read.key, "2")
        self.assertEqual(view.position_label(), "2")

    def test_up_to_date(self):
        self.add("1", "2")
        self.store.mark_all_read(self.work.id)
        view = self.browse()
        self.assertEqual(view.kind, VIEW_EMPTY)
        self.assertEqual(view.status, STATUS_UP_TO_DATE)

    def test_nothing_read(self):
        self.add("1", "2")
        view = self.browse(mode=MODE_READ)
        self.assertEqual(view.status, STATUS_NOTHING_READ)
        self.assertEqual(view.total, 0)


if __name__ == "__main__":
    unittest.main()
