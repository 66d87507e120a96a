"""
Tests for timestamp helpers and deadlines.
"""

import unittest
from datetime import datetime, timedelta, timezone

from core.temporal import (
    to_db_timestamp,
    from_db_timestamp,
    parse_iso_timestamp,
    parse_retry_after,
    format_age,
)
from concurrency.deadline import Deadline, DeadlineExceeded


class TestTimestamps(unittest.TestCase):
    """Storage encoding and catalog parsing."""

    def test_db_encoding_is_fixed_width_utc(self):
        value = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(to_db_timestamp(value), "2024-03-01T12:00:00.000000Z")

    def test_db_encoding_converts_offsets(self):
        value = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(to_db_timestamp(value), "2024-03-01T12:00:00.000000Z")

    def test_db_encoding_orders_as_text(self):
        earlier = to_db_timestamp(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))
        later = to_db_timestamp(datetime(2024, 3, 1, 10, 0, 0, 1, tzinfo=timezone.utc))
        self.assertLess(earlier, later)

    def test_decode_accepts_sqlite_current_timestamp(self):
        value = from_db_timestamp("2024-03-01 12:00:00")
        self.assertEqual(value, datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))

    def test_decode_empty_and_garbage(self):
        self.assertIsNone(from_db_timestamp(None))
        self.assertIsNone(from_db_timestamp(""))
        self.assertIsNone(from_db_timestamp("yesterday"))

    def test_parse_iso_with_z(self):
        value = parse_iso_timestamp("2024-03-01T12:00:00Z")
        self.assertEqual(value, datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))

    def test_parse_retry_after_seconds(self):
        self.assertEqual(parse_retry_after("5"), 5.0)
        self.assertEqual(parse_retry_after(None), 0.0)
        self.assertEqual(parse_retry_after("soon"), 0.0)

    def test_format_age(self):
        now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(format_age(None, now), "never")
        self.assertEqual(format_age(now - timedelta(hours=3), now), "3h ago")
        self.assertEqual(format_age(now - timedelta(days=2), now), "2d ago")


class TestDeadline(unittest.TestCase):
    """Time budgets."""

    def test_fresh_deadline_has_time_left(self):
        deadline = Deadline(60, "test")
        self.assertFalse(deadline.expired)
        deadline.check()

    def test_zero_budget_is_expired(self):
        deadline = Deadline(0, "test")
        self.assertTrue(deadline.expired)
        with self.assertRaises(DeadlineExceeded):
            deadline.check()

    def test_cancel_expires_immediately(self):
        deadline = Deadline(60, "test")
        deadline.cancel()
        self.assertTrue(deadline.expired)
        self.assertFalse(deadline.sleep(5))

    def test_cap_limits_step_timeout(self):
        deadline = Deadline(1, "test")
        self.assertLessEqual(deadline.cap(10), 1)
        self.assertEqual(Deadline.none().cap(10), 10)


if __name__ == "__main__":
    unittest.main()
