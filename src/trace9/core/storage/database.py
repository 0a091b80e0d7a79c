"""SQLite database management for the Trace-9 log store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- One row per user: manual targets, rolling baselines, intervention lock
CREATE TABLE IF NOT EXISTS user_targets (
    id                     TEXT PRIMARY KEY,
    user_id                TEXT NOT NULL UNIQUE,

    protein_target         INTEGER NOT NULL DEFAULT 100,
    gut_target             INTEGER NOT NULL DEFAULT 5,
    sun_target             INTEGER NOT NULL DEFAULT 5,
    exercise_target        INTEGER NOT NULL DEFAULT 5,

    sleep_baseline         REAL,
    rhr_baseline           REAL,
    hrv_baseline           REAL,

    is_baseline_complete   INTEGER NOT NULL DEFAULT 0,
    onboarding_complete    INTEGER NOT NULL DEFAULT 0,
    active_intervention_id TEXT,

    created_at             TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at             TEXT NOT NULL DEFAULT (datetime('now'))
);

-- One row per user per calendar date
CREATE TABLE IF NOT EXISTS daily_logs (
    id                 TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    date               TEXT NOT NULL,

    sleep              REAL NOT NULL,
    rhr                INTEGER NOT NULL,
    hrv                REAL NOT NULL,
    protein            INTEGER NOT NULL,
    gut                INTEGER NOT NULL,
    sun                INTEGER NOT NULL,
    exercise           INTEGER NOT NULL,
    symptom_score      INTEGER NOT NULL,
    symptom_name_enc   TEXT,

    sleep_flag         TEXT NOT NULL,
    rhr_flag           TEXT NOT NULL,
    hrv_flag           TEXT NOT NULL,
    protein_flag       TEXT NOT NULL,
    gut_flag           TEXT NOT NULL,
    sun_flag           TEXT NOT NULL,
    exercise_flag      TEXT NOT NULL,
    symptom_flag       TEXT NOT NULL,

    created_at         TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, date)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_logs_user_date ON daily_logs(user_id, date);
"""

# ---------------------------------------------------------------------------
# V2: Interventions (7-day experiments)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS interventions (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    hypothesis_text TEXT NOT NULL,
    start_date      TEXT NOT NULL,
    end_date        TEXT NOT NULL,
    result          TEXT,
    completed_at    TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_interventions_user ON interventions(user_id);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class TraceDatabase:
    """SQLite database manager for the Trace-9 log store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = TraceDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file))
        else:
            self._conn = sqlite3.connect(":memory:")

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Trace database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: interventions table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Trace database closed")

    def __enter__(self) -> TraceDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
