"""
Chapterwatch - Release Store
Users, tracked works and their entries on top of the SQLite database.

Reads return fully materialised dataclasses. Every write takes the
database writer lock for exactly one logical operation, so a sync, a
progress update and a scheduler tick never interleave half way.

Numeric predicates use the is_numeric_key() SQL function registered on
each connection, which is the same rule core.entry_keys applies in Python.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Tuple

from concurrency.db_retry import db_retry
from core.database import Database
from core.entry_keys import SQL_FUNCTION_NAME, parse_numeric_key, is_numeric_key
from core.logger import log_info, log_debug
from core.pairing_codes import PAIRING_CODE_FORMAT, generate_pairing_code, normalize_pairing_code
from core.temporal import utc_now, to_db_timestamp, from_db_timestamp
from tracking.errors import WorkNotFoundError, DuplicateWorkError, PairingError, InvalidPairingCodeError

SCHEDULER_LAST_RUN_KEY = "scheduler_last_run"

DEFAULT_PAIRING_TTL_HOURS = 48
PAIRING_CODE_ATTEMPTS = 5

# SQL fragments shared by the numeric queries (e = entries, w = works)
NUMERIC_FILTER = f"{SQL_FUNCTION_NAME}(e.entry_key)"
NUMERIC_VALUE = "CAST(e.entry_key AS REAL)"
UNREAD_FILTER = f"{NUMERIC_VALUE} > COALESCE(w.last_read_number, -1)"
READ_FILTER = f"{NUMERIC_VALUE} <= COALESCE(w.last_read_number, -1)"
EFFECTIVE_AT = "COALESCE(e.created_at, e.readable_at, e.published_at)"

RECALCULATE_UNREAD_SQL = f"""
    UPDATE works
    SET unread_count = (
        SELECT COUNT(*)
        FROM entries e
        WHERE e.work_id = works.id
          AND {SQL_FUNCTION_NAME}(e.entry_key)
          AND CAST(e.entry_key AS REAL) > COALESCE(works.last_read_number, -1)
    )
    WHERE id = ?
"""

UPSERT_ENTRY_SQL = """
    INSERT INTO entries (work_id, entry_key, title, published_at, readable_at, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(work_id, entry_key) DO UPDATE SET
        title = excluded.title,
        published_at = excluded.published_at,
        readable_at = excluded.readable_at,
        created_at = excluded.created_at,
        updated_at = excluded.updated_at
"""

WORK_COLUMNS = """
    id, user_id, external_id, title, alternate_channel, last_checked,
    last_seen_at, last_read_number, unread_count, created_at
"""


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class TrackedWork:
    """A work one user follows."""
    id: int
    user_id: int
    external_id: str
    title: str
    alternate_channel: bool = False
    last_checked: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    last_read_number: Optional[float] = None
    unread_count: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TrackedWork":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            external_id=row["external_id"],
            title=row["title"],
            alternate_channel=bool(row["alternate_channel"]),
            last_checked=from_db_timestamp(row["last_checked"]),
            last_seen_at=from_db_timestamp(row["last_seen_at"]),
            last_read_number=row["last_read_number"],
            unread_count=row["unread_count"] or 0,
            created_at=from_db_timestamp(row["created_at"]),
        )


@dataclass
class EntryRecord:
    """An entry as written by the sync engine."""
    key: str
    title: str = ""
    published_at: Optional[datetime] = None
    readable_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def effective_at(self) -> Optional[datetime]:
        for value in (self.created_at, self.readable_at, self.published_at):
            if value is not None:
                return value
        return None

    def as_params(self, work_id: int) -> Tuple:
        return (
            work_id,
            self.key,
            self.title or "",
            to_db_timestamp(self.published_at),
            to_db_timestamp(self.readable_at),
            to_db_timestamp(self.created_at),
            to_db_timestamp(self.updated_at),
        )


@dataclass
class EntryListItem:
    """An entry as shown in listings and menus."""
    key: str
    title: str
    seen_at: Optional[datetime] = None

    @property
    def is_numeric(self) -> bool:
        return is_numeric_key(self.key)

    @property
    def number(self) -> Optional[float]:
        return parse_numeric_key(self.key)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "EntryListItem":
        return cls(
            key=row["entry_key"],
            title=row["title"] or "",
            seen_at=from_db_timestamp(row["seen_at"]),
        )


@dataclass
class WorkDetails:
    """A tracked work plus entry statistics."""
    work: TrackedWork
    total_entries: int = 0
    numeric_entries: int = 0
    min_number: Optional[float] = None
    max_number: Optional[float] = None

    @property
    def extra_entries(self) -> int:
        return self.total_entries - self.numeric_entries


@dataclass
class StoreStatus:
    """Store-wide counters."""
    works: int = 0
    entries: int = 0
    users: int = 0
    unread_total: int = 0
    last_scheduler_run: Optional[datetime] = None


@dataclass
class PairingCode:
    """A single-use code the admin hands to a new user."""
    code: str
    created_by: int
    created_at: datetime
    expires_at: datetime
    used_by: Optional[int] = None
    used_at: Optional[datetime] = None

    @property
    def used(self) -> bool:
        return self.used_at is not None

    def expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PairingCode":
        return cls(
            code=row["code"],
            created_by=row["created_by"],
            created_at=from_db_timestamp(row["created_at"]),
            expires_at=from_db_timestamp(row["expires_at"]),
            used_by=row["used_by"],
            used_at=from_db_timestamp(row["used_at"]),
        )


def _range_clause(start: Optional[float], end: Optional[float]) -> Tuple[str, List]:
    """SQL and params restricting entry values to [start, end)."""
    clause = ""
    params: List = []
    if start is not None:
        clause += f" AND {NUMERIC_VALUE} >= ?"
        params.append(start)
    if end is not None:
        clause += f" AND {NUMERIC_VALUE} < ?"
        params.append(end)
    return clause, params


class ReleaseStore:
    """
    Durable state for tracked works.

    Args:
        db: Initialized Database
    """

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # USERS
    # =========================================================================

    @db_retry()
    def ensure_user(self, chat_id: int) -> None:
        """Register a user (no-op if already present)."""
        self.db.execute_write(
            "INSERT OR IGNORE INTO users (chat_id, created_at) VALUES (?, ?)",
            (chat_id, to_db_timestamp(utc_now()))
        )

    def list_users(self) -> List[int]:
        rows = self.db.execute("SELECT chat_id FROM users ORDER BY chat_id", fetch=True)
        return [row["chat_id"] for row in rows]

    # =========================================================================
    # PAIRING
    # =========================================================================

    @db_retry()
    def create_pairing_code(
        self,
        created_by: int,
        ttl_hours: float = DEFAULT_PAIRING_TTL_HOURS,
        now: Optional[datetime] = None,
    ) -> PairingCode:
        """
        Store a fresh single-use pairing code.

        Raises:
            PairingError: If no unused code could be allocated
        """
        created_at = now or utc_now()
        expires_at = created_at + timedelta(hours=ttl_hours)
        with self.db.writer() as conn:
            for _ in range(PAIRING_CODE_ATTEMPTS):
                code = generate_pairing_code()
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO pairing_codes (code, created_by, created_at, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (code, created_by, to_db_timestamp(created_at), to_db_timestamp(expires_at))
                )
                if cursor.rowcount:
                    break
            else:
                raise PairingError("Could not allocate an unused pairing code")

        log_info(f"Pairing code issued by {created_by}, expires {to_db_timestamp(expires_at)}", prefix="🔑")
        return PairingCode(code=code, created_by=created_by, created_at=created_at, expires_at=expires_at)

    @db_retry()
    def redeem_pairing_code(self, code: str, user_id: int, now: Optional[datetime] = None) -> PairingCode:
        """
        Consume a pairing code and register the user.

        The lookup, the checks and the update run under one writer lock, so
        a code can never be redeemed twice.

        Raises:
            InvalidPairingCodeError: Malformed, unknown, used or expired code
        """
        normalized = normalize_pairing_code(code)
        if normalized is None:
            raise InvalidPairingCodeError(str(code), f"is not in {PAIRING_CODE_FORMAT} format")

        used_at = now or utc_now()
        with self.db.writer() as conn:
            row = conn.execute("SELECT * FROM pairing_codes WHERE code = ?", (normalized,)).fetchone()
            if row is None:
                raise InvalidPairingCodeError(normalized, "does not exist")
            pairing = PairingCode.from_row(row)
            if pairing.used:
                raise InvalidPairingCodeError(normalized, "was already used")
            if pairing.expired(used_at):
                raise InvalidPairingCodeError(normalized, "has expired")

            conn.execute(
                "UPDATE pairing_codes SET used_by = ?, used_at = ? WHERE code = ? AND used_at IS NULL",
                (user_id, to_db_timestamp(used_at), normalized)
            )
            conn.execute(
                "INSERT OR IGNORE INTO users (chat_id, created_at) VALUES (?, ?)",
                (user_id, to_db_timestamp(used_at))
            )

        pairing.used_by = user_id
        pairing.used_at = used_at
        log_info(f"User {user_id} paired with a code from {pairing.created_by}", prefix="🔑")
        return pairing

    def get_pairing_code(self, code: str) -> Optional[PairingCode]:
        normalized = normalize_pairing_code(code)
        if normalized is None:
            return None
        row = self.db.fetch_one("SELECT * FROM pairing_codes WHERE code = ?", (normalized,))
        return PairingCode.from_row(row) if row else None

    def list_paired_users(self) -> List[int]:
        """Users admitted by redeeming a pairing code."""
        rows = self.db.execute(
            "SELECT DISTINCT used_by FROM pairing_codes WHERE used_by IS NOT NULL ORDER BY used_by",
            fetch=True
        )
        return [row["used_by"] for row in rows]

    def is_paired_user(self, user_id: int) -> bool:
        return self.db.fetch_value(
            "SELECT 1 FROM pairing_codes WHERE used_by = ? LIMIT 1", (user_id,)
        ) is not None

    # =========================================================================
    # WORKS
    # =========================================================================

    @db_retry()
    def add_work(
        self,
        user_id: int,
        external_id: str,
        title: str,
        alternate_channel: bool = False,
    ) -> TrackedWork:
        """
        Start tracking a work for a user.

        Raises:
            DuplicateWorkError: If the user already tracks this external id
        """
        now = to_db_timestamp(utc_now())
        with self.db.writer() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (chat_id, created_at) VALUES (?, ?)",
                (user_id, now)
            )
            existing = conn.execute(
                "SELECT id FROM works WHERE user_id = ? AND external_id = ?",
                (user_id, external_id)
            ).fetchone()
            if existing is not None:
                raise DuplicateWorkError(user_id, external_id, existing["id"])
            cursor = conn.execute(
                """
                INSERT INTO works (user_id, external_id, title, alternate_channel, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, external_id, title, 1 if alternate_channel else 0, now)
            )
            work_id = cursor.lastrowid

        log_info(f"Tracking '{title}' for user {user_id} (work {work_id})", prefix="📚")
        return self.require_work(work_id)

    def get_work(self, work_id: int) -> Optional[TrackedWork]:
        row = self.db.fetch_one(f"SELECT {WORK_COLUMNS} FROM works WHERE id = ?", (work_id,))
        return TrackedWork.from_row(row) if row else None

    def require_work(self, work_id: int) -> TrackedWork:
        """Like get_work() but raises WorkNotFoundError instead of returning None."""
        work = self.get_work(work_id)
        if work is None:
            raise WorkNotFoundError(work_id)
        return work

    def find_work(self, user_id: int, external_id: str) -> Optional[TrackedWork]:
        row = self.db.fetch_one(
            f"SELECT {WORK_COLUMNS} FROM works WHERE user_id = ? AND external_id = ?",
            (user_id, external_id)
        )
        return TrackedWork.from_row(row) if row else None

    def list_tracked_works(self, user_id: Optional[int] = None) -> List[TrackedWork]:
        """All tracked works, optionally only those of one user."""
        if user_id is None:
            rows = self.db.execute(
                f"SELECT {WORK_COLUMNS} FROM works ORDER BY id", fetch=True
            )
        else:
            rows = self.db.execute(
                f"SELECT {WORK_COLUMNS} FROM works WHERE user_id = ? ORDER BY title COLLATE NOCASE, id",
                (user_id,),
                fetch=True
            )
        return [TrackedWork.from_row(row) for row in rows]

    @db_retry()
    def delete_work(self, work_id: int) -> bool:
        """Stop tracking a work; its entries go with it. Returns False if unknown."""
        with self.db.writer() as conn:
            conn.execute("DELETE FROM entries WHERE work_id = ?", (work_id,))
            cursor = conn.execute("DELETE FROM works WHERE id = ?", (work_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            log_info(f"Stopped tracking work {work_id}", prefix="🗑️")
        return deleted

    @db_retry()
    def set_alternate_channel(self, work_id: int, enabled: bool) -> None:
        result = self.db.execute_write(
            "UPDATE works SET alternate_channel = ? WHERE id = ?",
            (1 if enabled else 0, work_id)
        )
        if result.rowcount == 0:
            raise WorkNotFoundError(work_id)

    # =========================================================================
    # SYNC STATE
    # =========================================================================

    @db_retry()
    def upsert_entry(self, work_id: int, record: EntryRecord) -> None:
        """Insert an entry or refresh its title and timestamps."""
        self.db.execute_write(UPSERT_ENTRY_SQL, record.as_params(work_id))

    @db_retry()
    def upsert_entries(self, work_id: int, records: List[EntryRecord]) -> int:
        """Upsert several entries in one transaction. Returns how many were written."""
        if not records:
            return 0
        with self.db.writer() as conn:
            conn.executemany(UPSERT_ENTRY_SQL, [record.as_params(work_id) for record in records])
        return len(records)

    @db_retry()
    def set_high_watermark(self, work_id: int, seen_at: datetime) -> bool:
        """
        Advance the work's last-seen timestamp.

        The watermark never moves backwards. Returns True if it changed.
        """
        value = to_db_timestamp(seen_at)
        result = self.db.execute_write(
            "UPDATE works SET last_seen_at = ? WHERE id = ? AND (last_seen_at IS NULL OR last_seen_at < ?)",
            (value, work_id, value)
        )
        return result.rowcount > 0

    @db_retry()
    def set_last_checked(self, work_id: int, checked_at: Optional[datetime] = None) -> None:
        self.db.execute_write(
            "UPDATE works SET last_checked = ? WHERE id = ?",
            (to_db_timestamp(checked_at or utc_now()), work_id)
        )

    @db_retry()
    def record_sync(
        self,
        work_id: int,
        records: List[EntryRecord],
        checked_at: Optional[datetime] = None,
        seen_at: Optional[datetime] = None,
    ) -> int:
        """
        Apply the outcome of one sync step atomically.

        Upserts the entries, stamps last_checked when given, advances the
        watermark when given, and recomputes the unread count, all inside a
        single transaction.

        Returns:
            The new unread count
        """
        with self.db.writer() as conn:
            if records:
                conn.executemany(UPSERT_ENTRY_SQL, [record.as_params(work_id) for record in records])
            if checked_at is not None:
                conn.execute(
                    "UPDATE works SET last_checked = ? WHERE id = ?",
                    (to_db_timestamp(checked_at), work_id)
                )
            if seen_at is not None:
                value = to_db_timestamp(seen_at)
                conn.execute(
                    "UPDATE works SET last_seen_at = ? "
                    "WHERE id = ? AND (last_seen_at IS NULL OR last_seen_at < ?)",
                    (value, work_id, value)
                )
            conn.execute(RECALCULATE_UNREAD_SQL, (work_id,))
            row = conn.execute("SELECT unread_count FROM works WHERE id = ?", (work_id,)).fetchone()
        if row is None:
            raise WorkNotFoundError(work_id)
        return row["unread_count"]

    def latest_entry_timestamp(self, work_id: int) -> Optional[datetime]:
        """Greatest effective timestamp among the work's stored entries."""
        value = self.db.fetch_value(
            f"SELECT MAX({EFFECTIVE_AT}) FROM entries e WHERE e.work_id = ?",
            (work_id,)
        )
        return from_db_timestamp(value)

    # =========================================================================
    # UNREAD ACCOUNTING
    # =========================================================================

    def count_unread(self, work_id: int) -> int:
        """Count numeric entries above the read position (computed, not cached)."""
        return self.count_in_range(work_id, read=False)

    def count_read(self, work_id: int) -> int:
        return self.count_in_range(work_id, read=True)

    @db_retry()
    def recalculate_unread_count(self, work_id: int) -> int:
        """Refresh the cached unread count. Returns the new value."""
        with self.db.writer() as conn:
            conn.execute(RECALCULATE_UNREAD_SQL, (work_id,))
            row = conn.execute("SELECT unread_count FROM works WHERE id = ?", (work_id,)).fetchone()
        if row is None:
            raise WorkNotFoundError(work_id)
        return row["unread_count"]

    @db_retry()
    def ratchet_read_position(self, work_id: int, value: float) -> int:
        """Move the read position up to value (never down). Returns the unread count."""
        with self.db.writer() as conn:
            cursor = conn.execute(
                """
                UPDATE works
                SET last_read_number = CASE
                    WHEN last_read_number IS NULL THEN ?
                    WHEN last_read_number < ? THEN ?
                    ELSE last_read_number
                END
                WHERE id = ?
                """,
                (value, value, value, work_id)
            )
            if cursor.rowcount == 0:
                raise WorkNotFoundError(work_id)
            conn.execute(RECALCULATE_UNREAD_SQL, (work_id,))
            return conn.execute(
                "SELECT unread_count FROM works WHERE id = ?", (work_id,)
            ).fetchone()["unread_count"]

    @db_retry()
    def retract_read_position(self, work_id: int, value: float) -> int:
        """
        Move the read position to the greatest stored numeric entry below
        value, or clear it when there is none. Returns the unread count.
        """
        with self.db.writer() as conn:
            previous = conn.execute(
                f"""
                SELECT MAX({NUMERIC_VALUE})
                FROM entries e
                WHERE e.work_id = ?
                  AND {NUMERIC_FILTER}
                  AND {NUMERIC_VALUE} < ?
                """,
                (work_id, value)
            ).fetchone()[0]
            cursor = conn.execute(
                "UPDATE works SET last_read_number = ? WHERE id = ?",
                (previous, work_id)
            )
            if cursor.rowcount == 0:
                raise WorkNotFoundError(work_id)
            conn.execute(RECALCULATE_UNREAD_SQL, (work_id,))
            return conn.execute(
                "SELECT unread_count FROM works WHERE id = ?", (work_id,)
            ).fetchone()["unread_count"]

    @db_retry()
    def mark_all_read(self, work_id: int) -> int:
        """
        Set the read position to the greatest stored numeric entry.

        Without numeric entries the position is left as it is.
        Returns the unread count.
        """
        with self.db.writer() as conn:
            highest = conn.execute(
                f"SELECT MAX({NUMERIC_VALUE}) FROM entries e WHERE e.work_id = ? AND {NUMERIC_FILTER}",
                (work_id,)
            ).fetchone()[0]
            if highest is not None:
                conn.execute(
                    "UPDATE works SET last_read_number = ? WHERE id = ?",
                    (highest, work_id)
                )
            conn.execute(RECALCULATE_UNREAD_SQL, (work_id,))
            row = conn.execute("SELECT unread_count FROM works WHERE id = ?", (work_id,)).fetchone()
        if row is None:
            raise WorkNotFoundError(work_id)
        return row["unread_count"]

    def last_read_entry(self, work_id: int) -> Optional[EntryListItem]:
        """Greatest numeric entry at or below the read position."""
        row = self.db.fetch_one(
            f"""
            SELECT e.entry_key, e.title, {EFFECTIVE_AT} AS seen_at
            FROM entries e
            JOIN works w ON w.id = e.work_id
            WHERE e.work_id = ?
              AND {NUMERIC_FILTER}
              AND {READ_FILTER}
            ORDER BY {NUMERIC_VALUE} DESC
            LIMIT 1
            """,
            (work_id,)
        )
        return EntryListItem.from_row(row) if row else None

    # =========================================================================
    # RANGE QUERIES (navigation)
    # =========================================================================

    def count_in_range(
        self,
        work_id: int,
        read: bool,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> int:
        """Count read (or unread) numeric entries with start <= value < end."""
        clause, params = _range_clause(start, end)
        return self.db.fetch_value(
            f"""
            SELECT COUNT(*)
            FROM entries e
            JOIN works w ON w.id = e.work_id
            WHERE e.work_id = ?
              AND {NUMERIC_FILTER}
              AND {READ_FILTER if read else UNREAD_FILTER}
              {clause}
            """,
            tuple([work_id] + params),
            default=0
        )

    def list_bucket_starts(
        self,
        work_id: int,
        read: bool,
        bucket_size: int,
        range_start: float,
        range_end: float,
    ) -> List[int]:
        """
        Distinct bucket starts of matching entries inside [range_start, range_end).

        Values are grouped by floor(value / bucket_size) * bucket_size; when
        the parent range starts at 1 the lowest bucket is labelled 1 instead
        of 0. Unread buckets come back ascending, read buckets descending.
        """
        if bucket_size <= 0:
            raise ValueError(f"Invalid bucket size: {bucket_size}")

        if range_start == 1:
            expr = (
                f"CASE WHEN {NUMERIC_VALUE} < ? THEN 1 "
                f"ELSE CAST({NUMERIC_VALUE} / ? AS INTEGER) * ? END"
            )
            expr_params = [bucket_size, bucket_size, bucket_size]
        else:
            expr = f"CAST({NUMERIC_VALUE} / ? AS INTEGER) * ?"
            expr_params = [bucket_size, bucket_size]

        rows = self.db.execute(
            f"""
            SELECT DISTINCT {expr} AS bucket_start
            FROM entries e
            JOIN works w ON w.id = e.work_id
            WHERE e.work_id = ?
              AND {NUMERIC_FILTER}
              AND {READ_FILTER if read else UNREAD_FILTER}
              AND {NUMERIC_VALUE} >= ?
              AND {NUMERIC_VALUE} < ?
            ORDER BY bucket_start {"DESC" if read else "ASC"}
            """,
            tuple(expr_params + [work_id, range_start, range_end]),
            fetch=True
        )
        return [int(row["bucket_start"]) for row in rows]

    def list_in_range(
        self,
        work_id: int,
        read: bool,
        start: Optional[float] = None,
        end: Optional[float] = None,
        limit: int = -1,
        offset: int = 0,
    ) -> List[EntryListItem]:
        """Matching numeric entries in [start, end): unread ascending, read descending."""
        clause, params = _range_clause(start, end)
        rows = self.db.execute(
            f"""
            SELECT e.entry_key, e.title, {EFFECTIVE_AT} AS seen_at
            FROM entries e
            JOIN works w ON w.id = e.work_id
            WHERE e.work_id = ?
              AND {NUMERIC_FILTER}
              AND {READ_FILTER if read else UNREAD_FILTER}
              {clause}
            ORDER BY {NUMERIC_VALUE} {"DESC" if read else "ASC"}
            LIMIT ? OFFSET ?
            """,
            tuple([work_id] + params + [limit, offset]),
            fetch=True
        )
        return [EntryListItem.from_row(row) for row in rows]

    def list_entries(self, work_id: int, limit: int = -1) -> List[EntryListItem]:
        """Every stored entry: numeric ones highest first, then extras newest first."""
        rows = self.db.execute(
            f"""
            SELECT e.entry_key, e.title, {EFFECTIVE_AT} AS seen_at
            FROM entries e
            WHERE e.work_id = ?
            ORDER BY {NUMERIC_FILTER} DESC,
                     CASE WHEN {NUMERIC_FILTER} THEN {NUMERIC_VALUE} END DESC,
                     seen_at DESC
            LIMIT ?
            """,
            (work_id, limit),
            fetch=True
        )
        return [EntryListItem.from_row(row) for row in rows]

    # =========================================================================
    # REPORTING
    # =========================================================================

    def get_work_details(self, work_id: int) -> WorkDetails:
        work = self.require_work(work_id)
        row = self.db.fetch_one(
            f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN {NUMERIC_FILTER} THEN 1 ELSE 0 END), 0) AS numeric_total,
                MIN(CASE WHEN {NUMERIC_FILTER} THEN {NUMERIC_VALUE} END) AS min_number,
                MAX(CASE WHEN {NUMERIC_FILTER} THEN {NUMERIC_VALUE} END) AS max_number
            FROM entries e
            WHERE e.work_id = ?
            """,
            (work_id,)
        )
        return WorkDetails(
            work=work,
            total_entries=row["total"],
            numeric_entries=row["numeric_total"],
            min_number=row["min_number"],
            max_number=row["max_number"],
        )

    def record_scheduler_run(self, when: Optional[datetime] = None) -> None:
        when = when or utc_now()
        self.db.set_state(SCHEDULER_LAST_RUN_KEY, to_db_timestamp(when))
        log_debug(f"Scheduler run recorded at {to_db_timestamp(when)}")

    def get_status(self) -> StoreStatus:
        stats = self.db.get_stats()
        return StoreStatus(
            works=stats["works"],
            entries=stats["entries"],
            users=stats["users"],
            unread_total=stats["unread_total"],
            last_scheduler_run=from_db_timestamp(self.db.get_state(SCHEDULER_LAST_RUN_KEY)),
        )
