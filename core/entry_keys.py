"""
Chapterwatch - Entry Keys
Canonical classification of chapter keys as numeric or non-numeric.

A key is numeric when it is one or more digits, optionally followed by a
single '.' and more digits ("12", "12.5"). Everything else ("12.5.1",
"extra:<id>", "", "ex") is an extra: stored and listed, but ignored by
read/unread accounting and bucket navigation.

The same predicate is registered on every SQLite connection as the SQL
function ``is_numeric_key(text)`` so the database never applies a
different rule than Python does.
"""

import re
from typing import Optional

NUMERIC_KEY_PATTERN = re.compile(r"^[0-9]+(?:\.[0-9]+)?$")

EXTRA_KEY_PREFIX = "extra:"
UNKNOWN_EXTRA_KEY = EXTRA_KEY_PREFIX + "unknown"
EXTRA_DISPLAY_LABEL = "Extra"

# Name of the SQL function registered on each connection
SQL_FUNCTION_NAME = "is_numeric_key"


def is_numeric_key(key: Optional[str]) -> bool:
    """Return True if the key is a non-negative decimal with at most one point."""
    if not isinstance(key, str):
        return False
    return NUMERIC_KEY_PATTERN.match(key) is not None


def parse_numeric_key(key: Optional[str]) -> Optional[float]:
    """
    Parse a chapter key into its numeric value.

    Surrounding whitespace is ignored. Returns None for non-numeric keys;
    callers treat that as a classification outcome, never as an error.
    """
    if not isinstance(key, str):
        return None
    key = key.strip()
    if not is_numeric_key(key):
        return None
    return float(key)


def entry_key_for(chapter_number: Optional[str], source_id: Optional[str]) -> str:
    """
    Build the storage key for a feed entry.

    Entries with a chapter number are keyed by it (trimmed). Entries without
    one are keyed by their source id so distinct extras never collapse.
    """
    number = (chapter_number or "").strip()
    if number:
        return number
    source_id = (source_id or "").strip()
    if source_id:
        return EXTRA_KEY_PREFIX + source_id
    return UNKNOWN_EXTRA_KEY


def display_key(chapter_number: Optional[str]) -> str:
    """Human readable chapter number ("Extra" when the source has none)."""
    number = (chapter_number or "").strip()
    return number or EXTRA_DISPLAY_LABEL


def format_position(value: Optional[float]) -> str:
    """Render a read position without a trailing '.0' for whole chapters."""
    if value is None:
        return "-"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def sql_is_numeric_key(key) -> int:
    """SQLite adapter: returns 1/0 because SQLite has no boolean type."""
    return 1 if is_numeric_key(key) else 0
