"""
Tests for chapter key classification.

The same predicate backs both Python-side parsing and the is_numeric_key()
SQL function, so these cases pin down the rule for both.
"""

import unittest

from core.entry_keys import (
    is_numeric_key,
    parse_numeric_key,
    entry_key_for,
    display_key,
    format_position,
    sql_is_numeric_key,
    UNKNOWN_EXTRA_KEY,
)


class TestNumericClassification(unittest.TestCase):
    """Which keys count as chapter numbers."""

    def test_integers_and_single_decimal_are_numeric(self):
        for key in ("0", "1", "12", "0012", "12.5", "1000.25"):
            self.assertTrue(is_numeric_key(key), key)

    def test_everything_else_is_extra(self):
        for key in ("", "ex", "12.5.1", "-3", "1e3", ".5", "5.", "extra:abc", " 12", None):
            self.assertFalse(is_numeric_key(key), repr(key))

    def test_parse_trims_whitespace(self):
        self.assertEqual(parse_numeric_key(" 12.5 "), 12.5)
        self.assertEqual(parse_numeric_key("7"), 7.0)

    def test_parse_returns_none_for_extras(self):
        self.assertIsNone(parse_numeric_key("12.5.1"))
        self.assertIsNone(parse_numeric_key(""))
        self.assertIsNone(parse_numeric_key(None))

    def test_sql_adapter_returns_integers(self):
        self.assertEqual(sql_is_numeric_key("10"), 1)
        self.assertEqual(sql_is_numeric_key("extra:x"), 0)
        self.assertEqual(sql_is_numeric_key(None), 0)


class TestEntryKeys(unittest.TestCase):
    """Storage keys for feed entries."""

    def test_chapter_number_is_trimmed(self):
        self.assertEqual(entry_key_for(" 42 ", "abc"), "42")

    def test_missing_number_uses_source_id(self):
        self.assertEqual(entry_key_for("", "abc"), "extra:abc")
        self.assertEqual(entry_key_for(None, " abc "), "extra:abc")

    def test_distinct_extras_do_not_collapse(self):
        self.assertNotEqual(entry_key_for("", "a"), entry_key_for("", "b"))

    def test_nothing_known(self):
        self.assertEqual(entry_key_for("", ""), UNKNOWN_EXTRA_KEY)

    def test_display_key(self):
        self.assertEqual(display_key("12"), "12")
        self.assertEqual(display_key(""), "Extra")

    def test_format_position(self):
        self.assertEqual(format_position(None), "-")
        self.assertEqual(format_position(12.0), "12")
        self.assertEqual(format_position(12.5), "12.5")


if __name__ == "__main__":
    unittest.main()
