"""
Chapterwatch - Database Module
SQLite with WAL mode, versioned migrations, and single-writer connection handling
"""

import sqlite3
import json
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Any, List, Tuple, NamedTuple

from core.entry_keys import SQL_FUNCTION_NAME, sql_is_numeric_key
from core.logger import log_success, log_error, log_config, log_section
from core.temporal import utc_now, to_db_timestamp
from concurrency.locks import LockManager, get_lock_manager, DATABASE_LOCK

# Bootstrap table: every applied migration is recorded here
SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    description TEXT,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

# v1: users, tracked works and their entries
MIGRATION_V1_SQL = """
CREATE TABLE IF NOT EXISTS users (
    chat_id INTEGER PRIMARY KEY,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- One row per (user, catalog work); the same work can be tracked by several users
CREATE TABLE IF NOT EXISTS works (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(chat_id),
    external_id TEXT NOT NULL,
    title TEXT NOT NULL,

    -- Alternate distribution channel (e.g. MANGA Plus): warn earlier about unread backlog
    alternate_channel INTEGER NOT NULL DEFAULT 0,

    -- Sync state
    last_checked TIMESTAMP,
    last_seen_at TIMESTAMP,

    -- Progress state
    last_read_number REAL,
    unread_count INTEGER NOT NULL DEFAULT 0,

    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, external_id)
);

-- Chapters; entry_key is the numeric chapter string or "extra:<source id>"
CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    work_id INTEGER NOT NULL REFERENCES works(id) ON DELETE CASCADE,
    entry_key TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    published_at TIMESTAMP,
    readable_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE (work_id, entry_key)
);

CREATE INDEX IF NOT EXISTS idx_works_user ON works(user_id);
CREATE INDEX IF NOT EXISTS idx_entries_work ON entries(work_id);
"""

# v2: key/value runtime state (scheduler last run, etc.)
MIGRATION_V2_SQL = """
CREATE TABLE IF NOT EXISTS state (
    key TEXT PRIMARY KEY,
    value JSON,
    updated_at TIMESTAMP
);
"""

# v3: effective-timestamp lookups per work (watermark backfill, listings)
MIGRATION_V3_SQL = """
CREATE INDEX IF NOT EXISTS idx_entries_work_seen
    ON entries(work_id, COALESCE(created_at, readable_at, published_at));
"""

# v4: single-use pairing codes that admit users beyond the configured allow list
MIGRATION_V4_SQL = """
CREATE TABLE IF NOT EXISTS pairing_codes (
    code TEXT PRIMARY KEY,
    created_by INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL,
    expires_at TIMESTAMP NOT NULL,
    used_by INTEGER,
    used_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_pairing_codes_used_by ON pairing_codes(used_by);
"""

# Ordered migration list: (version, description, sql). Append only.
MIGRATIONS: List[Tuple[int, str, str]] = [
    (1, "users, works and entries", MIGRATION_V1_SQL),
    (2, "runtime state table", MIGRATION_V2_SQL),
    (3, "effective timestamp index", MIGRATION_V3_SQL),
    (4, "pairing codes", MIGRATION_V4_SQL),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


class WriteResult(NamedTuple):
    """Outcome of a single write statement."""
    rowcount: int
    lastrowid: Optional[int]


class Database:
    """
    SQLite database manager with WAL mode and a single logical writer.

    Every read opens a short-lived connection, fetches all rows and closes
    it before returning, so no cursor is ever left holding the file while a
    dependent write runs. Writes are serialized through the "database" lock.
    """

    def __init__(
        self,
        db_path: Path,
        busy_timeout_ms: int = 5000,
        lock_manager: Optional[LockManager] = None,
    ):
        """
        Initialize the database.

        Args:
            db_path: Path to the SQLite database file
            busy_timeout_ms: Timeout for busy/locked database
            lock_manager: Lock manager providing the writer lock (global one by default)
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._locks = lock_manager or get_lock_manager()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> bool:
        """
        Initialize the database: create file, set WAL mode, apply migrations.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            log_section("Initializing database", "📁")
            log_config("Path", str(self.db_path), indent=1)

            with self._locks.acquire(DATABASE_LOCK):
                with self.get_connection() as conn:
                    conn.execute("PRAGMA journal_mode=WAL")
                    conn.execute("PRAGMA synchronous=NORMAL")

                    conn.executescript(SCHEMA_VERSION_SQL)
                    current_version = self._current_version(conn)
                    if current_version < SCHEMA_VERSION:
                        self._apply_migrations(conn, current_version)
                    log_config("Schema", f"Version {self._current_version(conn)}", indent=1)

                    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
                    log_config("Mode", f"{str(mode).upper()} (Write-Ahead Logging)", indent=1)

            log_success("Database ready")
            self._initialized = True
            return True

        except Exception as e:
            log_error(f"Database initialization failed: {e}")
            return False

    @staticmethod
    def _current_version(conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def _apply_migrations(self, conn: sqlite3.Connection, from_version: int) -> None:
        """
        Apply every migration newer than from_version, in order.

        Each step is recorded in schema_version as soon as it succeeds, so an
        interrupted upgrade resumes from the first unapplied step.

        Raises:
            RuntimeError: If any migration fails - we fail hard to prevent
                          running with a broken/inconsistent schema.
        """
        version = from_version
        try:
            for version, description, sql in MIGRATIONS:
                if version <= from_version:
                    continue
                log_config("Applying migration", f"v{version} ({description})", indent=1)
                conn.executescript(sql)
                conn.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    (version, description)
                )
                conn.commit()
            log_config("Migration", f"v{from_version} → v{SCHEMA_VERSION}", indent=1)

        except Exception as e:
            log_error(f"Migration v{version} failed (from v{from_version}): {e}")
            raise RuntimeError(
                f"Database migration failed: {e}. "
                f"Please fix the database or delete it to start fresh."
            ) from e

    @contextmanager
    def get_connection(self):
        """
        Get a database connection with proper configuration.

        Yields:
            Configured SQLite connection (committed on success, rolled back on error)
        """
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000,
            check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.create_function(SQL_FUNCTION_NAME, 1, sql_is_numeric_key, deterministic=True)
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def writer(self):
        """
        Hold the single-writer lock and a connection for one logical operation.

        Use for read-then-write sequences that must not interleave with
        other writers. The lock is released on every exit path.
        """
        with self._locks.acquire(DATABASE_LOCK):
            with self.get_connection() as conn:
                yield conn

    def execute(
        self,
        sql: str,
        params: Tuple = (),
        fetch: bool = False
    ) -> Optional[List[sqlite3.Row]]:
        """
        Execute a SQL statement.

        Args:
            sql: SQL statement
            params: Parameters for the statement
            fetch: Whether to fetch and return results

        Returns:
            List of rows if fetch=True, None otherwise
        """
        if fetch:
            with self.get_connection() as conn:
                return conn.execute(sql, params).fetchall()
        self.execute_write(sql, params)
        return None

    def fetch_one(self, sql: str, params: Tuple = ()) -> Optional[sqlite3.Row]:
        """Fetch the first row of a query (or None)."""
        rows = self.execute(sql, params, fetch=True)
        return rows[0] if rows else None

    def fetch_value(self, sql: str, params: Tuple = (), default: Any = None) -> Any:
        """Fetch the first column of the first row (or default)."""
        row = self.fetch_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    def execute_write(self, sql: str, params: Tuple = ()) -> WriteResult:
        """Execute a single write statement under the writer lock."""
        with self.writer() as conn:
            cursor = conn.execute(sql, params)
            return WriteResult(cursor.rowcount, cursor.lastrowid)

    def schema_version(self) -> int:
        """Highest applied migration version."""
        return self.fetch_value("SELECT MAX(version) FROM schema_version", default=0)

    def get_state(self, key: str, default: Any = None) -> Any:
        """Get a value from the state table."""
        result = self.execute(
            "SELECT value FROM state WHERE key = ?",
            (key,),
            fetch=True
        )
        if result:
            value = result[0]["value"]
            # SQLite 3.38+ may return native types from JSON columns
            if isinstance(value, str):
                return json.loads(value)
            return value
        return default

    def set_state(self, key: str, value: Any) -> None:
        """Set a value in the state table."""
        now = to_db_timestamp(utc_now())
        self.execute_write(
            """
            INSERT INTO state (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), now)
        )

    def get_stats(self) -> dict:
        """Get database statistics."""
        stats = {}

        with self.get_connection() as conn:
            stats["users"] = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            stats["works"] = conn.execute("SELECT COUNT(*) FROM works").fetchone()[0]
            stats["entries"] = conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]
            stats["numeric_entries"] = conn.execute(
                f"SELECT COUNT(*) FROM entries WHERE {SQL_FUNCTION_NAME}(entry_key)"
            ).fetchone()[0]
            stats["unread_total"] = conn.execute(
                "SELECT COALESCE(SUM(unread_count), 0) FROM works"
            ).fetchone()[0]

        return stats


# Global database instance
_db: Optional[Database] = None


def init_database(db_path: Path, busy_timeout_ms: int = 5000) -> Database:
    """Initialize the global database instance."""
    global _db
    _db = Database(db_path, busy_timeout_ms)
    if not _db.initialize():
        raise RuntimeError(f"Could not initialize database at {db_path}")
    return _db
