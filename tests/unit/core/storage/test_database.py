"""Tests for HealthDatabase: schema creation, constraints, lifecycle."""

from __future__ import annotations

import sqlite3

import pytest

from youphoria.core.storage.database import SCHEMA_VERSION, DatabaseError, HealthDatabase


class TestInitialization:
    def test_in_memory_initialize(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        assert db.connection is not None
        db.close()

    def test_double_initialize_is_idempotent(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        conn1 = db.connection
        db.initialize()
        assert db.connection is conn1
        db.close()

    def test_connection_before_init_raises(self):
        db = HealthDatabase(":memory:")
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = db.connection

    def test_context_manager(self):
        with HealthDatabase(":memory:") as db:
            assert db.connection is not None
        with pytest.raises(DatabaseError):
            _ = db.connection


class TestSchema:
    def test_schema_version_recorded(self):
        with HealthDatabase(":memory:") as db:
            assert db.get_schema_version() == SCHEMA_VERSION

    def test_tables_created(self):
        expected_tables = {
            "health_records",
            "health_events",
            "connected_sources",
            "conversations",
            "messages",
            "uploaded_files",
            "schema_version",
            "audit_log",
        }
        with HealthDatabase(":memory:") as db:
            cursor = db.connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            tables = {row[0] for row in cursor.fetchall()}
            for t in expected_tables:
                assert t in tables, f"Missing table: {t}"

    def test_indexes_created(self):
        expected_indexes = {
            "idx_records_user_metric",
            "idx_records_canonical",
            "idx_events_user_start",
            "idx_messages_conv",
            "idx_uploads_user",
            "idx_audit_timestamp",
        }
        with HealthDatabase(":memory:") as db:
            cursor = db.connection.execute("SELECT name FROM sqlite_master WHERE type='index'")
            indexes = {row[0] for row in cursor.fetchall()}
            for idx in expected_indexes:
                assert idx in indexes, f"Missing index: {idx}"

    def test_foreign_keys_enabled(self):
        with HealthDatabase(":memory:") as db:
            assert db.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_message_role_is_constrained(self):
        with HealthDatabase(":memory:") as db:
            conn = db.connection
            conn.execute(
                "INSERT INTO conversations (id, user_id, title, created_at) VALUES ('c1', 'u1', 't', '2026-01-01')"
            )
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO messages (id, conversation_id, role, content, created_at) "
                    "VALUES ('m1', 'c1', 'system', 'hi', '2026-01-01')"
                )

    def test_event_end_before_start_is_rejected(self):
        with HealthDatabase(":memory:") as db:
            with pytest.raises(sqlite3.IntegrityError):
                db.connection.execute(
                    "INSERT INTO health_events (id, user_id, event_type, start_time, end_time, source_app) "
                    "VALUES ('e1', 'u1', 'workout', '2026-01-02T00:00:00.000+00:00', "
                    "'2026-01-01T00:00:00.000+00:00', 'Strava')"
                )


class TestFileDatabase:
    def test_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "health.db"
        db = HealthDatabase(str(db_path))
        db.initialize()
        assert db_path.exists()
        assert db.get_schema_version() == SCHEMA_VERSION
        db.close()

    def test_reopen_keeps_single_version(self, tmp_path):
        db_path = str(tmp_path / "health.db")
        with HealthDatabase(db_path):
            pass
        with HealthDatabase(db_path) as db:
            rows = db.connection.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
            assert db.get_schema_version() == SCHEMA_VERSION
            assert rows == 1


class TestClose:
    def test_close_makes_connection_unavailable(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        db.close()
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = db.connection

    def test_double_close_is_safe(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        db.close()
        db.close()
