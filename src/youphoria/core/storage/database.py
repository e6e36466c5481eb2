"""SQLite database management for the Youphoria health data bank.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 3

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- Normalized scalar observations (canonical units)
CREATE TABLE IF NOT EXISTS health_records (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    metric_type   TEXT NOT NULL,
    data_category TEXT NOT NULL,
    value         REAL NOT NULL,
    unit          TEXT NOT NULL,
    recorded_at   TEXT NOT NULL,
    source_app    TEXT NOT NULL,
    source_device TEXT,
    quality_score REAL NOT NULL DEFAULT 0.5
                  CHECK (quality_score >= 0.0 AND quality_score <= 1.0),
    is_canonical  INTEGER NOT NULL DEFAULT 1,
    description   TEXT,
    metadata_json TEXT,
    synced_at     TEXT NOT NULL,
    created_at    TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, metric_type, recorded_at, source_app)
);

-- Bounded activities: workouts, meals, sleep sessions
CREATE TABLE IF NOT EXISTS health_events (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    event_type    TEXT NOT NULL,
    start_time    TEXT NOT NULL,
    end_time      TEXT,
    title         TEXT NOT NULL DEFAULT '',
    description   TEXT,
    metrics_json  TEXT NOT NULL DEFAULT '{}',
    source_app    TEXT NOT NULL,
    source_device TEXT,
    quality_score REAL NOT NULL DEFAULT 0.5,
    created_at    TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK (end_time IS NULL OR end_time >= start_time),
    UNIQUE (user_id, event_type, start_time)
);

-- One connection per (user, app); reconnecting updates the row
CREATE TABLE IF NOT EXISTS connected_sources (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    app_name        TEXT NOT NULL,
    app_type        TEXT NOT NULL DEFAULT 'other',
    credentials_enc TEXT,
    is_active       INTEGER NOT NULL DEFAULT 1,
    connected_at    TEXT NOT NULL,
    last_sync       TEXT,
    UNIQUE (user_id, app_name)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_records_user_metric ON health_records(user_id, metric_type, recorded_at);
CREATE INDEX IF NOT EXISTS idx_records_canonical   ON health_records(user_id, is_canonical);
CREATE INDEX IF NOT EXISTS idx_records_source      ON health_records(user_id, source_app);
CREATE INDEX IF NOT EXISTS idx_events_user_start   ON health_events(user_id, start_time);
"""

# ---------------------------------------------------------------------------
# V2: Chat history and uploaded documents
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS conversations (
    id         TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL,
    title      TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role            TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content         TEXT NOT NULL,
    metadata_json   TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS uploaded_files (
    id                    TEXT PRIMARY KEY,
    user_id               TEXT NOT NULL,
    file_name             TEXT NOT NULL,
    mime_type             TEXT NOT NULL,
    size_bytes            INTEGER NOT NULL,
    storage_path          TEXT NOT NULL,
    extracted_data_enc    TEXT,
    extraction_confidence REAL,
    data_categories_json  TEXT NOT NULL DEFAULT '[]',
    date_range_start      TEXT,
    date_range_end        TEXT,
    summary               TEXT,
    created_at            TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_conv      ON messages(conversation_id, created_at);
CREATE INDEX IF NOT EXISTS idx_uploads_user       ON uploaded_files(user_id, created_at);
"""

# ---------------------------------------------------------------------------
# V3: Audit log (access logging + LLM disclosure)
# ---------------------------------------------------------------------------

_SCHEMA_V3 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    user_id         TEXT,
    action          TEXT NOT NULL,
    operation       TEXT,
    input_hash      TEXT,
    llm_provider    TEXT,
    llm_disclosed   INTEGER DEFAULT 0,
    resource_id     TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_user      ON audit_log(user_id);
"""

_MIGRATIONS: list[tuple[int, str, str]] = [
    (2, _SCHEMA_V2, "conversations, messages, uploaded_files"),
    (3, _SCHEMA_V3, "audit_log table"),
]


class DatabaseError(Exception):
    """Raised when database operations fail."""


class HealthDatabase:
    """SQLite database manager for the Youphoria health data bank.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    The connection is shared across the server's worker threads
    (``check_same_thread=False``); SQLite serializes the writes.

    Usage::

        db = HealthDatabase(":memory:")
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
            self._conn = sqlite3.connect(str(db_file), check_same_thread=False)
        else:
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Health database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        # V1 is always applied; CREATE IF NOT EXISTS is idempotent
        conn.executescript(_SCHEMA_V1)

        current_version = self.get_schema_version()

        for version, ddl, description in _MIGRATIONS:
            if current_version < version:
                conn.executescript(ddl)
                logger.info("Applied schema migration V%d: %s", version, description)

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
            logger.info("Health database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
