"""SQLite database connection and schema management."""

import contextlib
import os
import sqlite3
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import structlog

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600

# email and username are unique across each table (case-insensitive).
# Uniqueness across the two tables is checked inside the store's transactions.
_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS pending_registrations (
    email TEXT PRIMARY KEY COLLATE NOCASE,
    username TEXT NOT NULL COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    confirmation_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_pending_username
    ON pending_registrations (username);

CREATE INDEX IF NOT EXISTS idx_pending_created_at
    ON pending_registrations (created_at);

CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL COLLATE NOCASE,
    email TEXT NOT NULL COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    avatar_url TEXT,
    gender TEXT,
    age INTEGER,
    height REAL,
    height_unit TEXT NOT NULL DEFAULT 'cm',
    current_weight REAL,
    current_weight_unit TEXT NOT NULL DEFAULT 'Kg',
    goal_weight REAL,
    goal_weight_unit TEXT NOT NULL DEFAULT 'Kg',
    password_reset_id TEXT,
    pending_email TEXT COLLATE NOCASE,
    email_change_id TEXT,
    email_change_expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_username
    ON accounts (username);

CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_email
    ON accounts (email);

CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_email_change_id
    ON accounts (email_change_id) WHERE email_change_id IS NOT NULL;

CREATE INDEX IF NOT EXISTS idx_accounts_email_change_expires_at
    ON accounts (email_change_expires_at) WHERE email_change_expires_at IS NOT NULL;
"""


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 text, so stored timestamps compare correctly as strings."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class Database:
    """SQLite database wrapper with schema management."""

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database, apply pragmas, create schema, and harden file permissions.

        The connection runs in autocommit mode; multi-statement operations
        use transaction() explicitly.
        """
        parent = Path(self._path).parent
        parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_SCHEMA_SQL)

        self._harden_permissions()
        logger.info("database connected", path=self._path)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in a write transaction; roll back if it raises."""
        conn = self.connection
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def _harden_permissions(self) -> None:
        """Set restrictive file permissions on POSIX systems (best effort).

        Hardens the main DB file and WAL/SHM sibling files created by WAL mode,
        since they also contain database content (password hashes).
        """
        if os.name != "posix":  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))
