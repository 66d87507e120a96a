"""
Chapterwatch - Temporal Helpers
UTC timestamps, database encoding, and catalog timestamp parsing
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

# Fixed-width UTC format so stored timestamps compare correctly as text
DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Encode a datetime for storage (None stays None)."""
    if value is None:
        return None
    return ensure_utc(value).strftime(DB_TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Decode a stored timestamp.

    Accepts the canonical format plus the ISO 8601 variants SQLite's own
    CURRENT_TIMESTAMP and older rows may contain. Unparseable or empty
    values decode to None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return ensure_utc(datetime.strptime(text, DB_TIMESTAMP_FORMAT))
    except ValueError:
        pass
    return parse_iso_timestamp(text)


def parse_iso_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp as returned by the catalog API.

    "2024-03-01T12:00:00+00:00", "2024-03-01T12:00:00Z" and
    "2024-03-01 12:00:00" all parse; anything else returns None.
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> float:
    """
    Interpret a Retry-After header.

    Returns the delay in seconds (0 when absent or unparseable). The header
    is usually a number of seconds but may also be an HTTP date.
    """
    if not value:
        return 0.0
    text = value.strip()
    if not text:
        return 0.0
    try:
        seconds = int(text)
        return float(seconds) if seconds > 0 else 0.0
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return 0.0
    if when is None:
        return 0.0
    delay = (ensure_utc(when) - (now or utc_now())).total_seconds()
    return delay if delay > 0 else 0.0


def format_age(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Short relative description ("3h ago") for status output."""
    if value is None:
        return "never"
    delta = (now or utc_now()) - ensure_utc(value)
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"
