"""Health data repository: CRUD for records, events, sources and uploads.

Mediates between the storage models and SQLite. Credentials and extracted
document payloads pass through ``FieldEncryptor``; scalar records do not.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from youphoria.core.storage.database import HealthDatabase
from youphoria.core.storage.encryption import EncryptionError, FieldEncryptor
from youphoria.core.storage.event_metrics import parse_event_metrics
from youphoria.core.storage.models import (
    ConnectedSource,
    HealthEvent,
    HealthRecord,
    UploadedFile,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


@dataclass
class UpsertSummary:
    inserted: int = 0
    skipped: int = 0
    inserted_ids: list[str] = field(default_factory=list)


@dataclass
class UserDataDeletion:
    """What ``delete_all_user_data`` removed. ``storage_paths`` are blobs to purge."""

    records: int = 0
    events: int = 0
    sources: int = 0
    conversations: int = 0
    uploaded_files: int = 0
    storage_paths: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.records + self.events + self.sources + self.conversations + self.uploaded_files


def _json_or_none(data: dict[str, Any] | None) -> str | None:
    return json.dumps(data, separators=(",", ":")) if data else None


class HealthRepository:
    """Repository for the user's health data bank.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = HealthRepository(db, FieldEncryptor(key))

        summary = repo.upsert_health_records(records)
        weights = repo.get_health_records(user_id, metric_types=["weight"])
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Health records
    # ------------------------------------------------------------------

    def _insert_record(self, conn: sqlite3.Connection, record: HealthRecord, synced_at: str) -> str | None:
        rid = record.id or self._new_id()
        cursor = conn.execute(
            """INSERT INTO health_records (
                id, user_id, metric_type, data_category, value, unit, recorded_at,
                source_app, source_device, quality_score, is_canonical,
                description, metadata_json, synced_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, metric_type, recorded_at, source_app) DO NOTHING""",
            (
                rid,
                record.user_id,
                record.metric_type,
                record.data_category,
                record.value,
                record.unit,
                record.recorded_at,
                record.source_app,
                record.source_device,
                record.quality_score,
                1 if record.is_canonical else 0,
                record.description,
                _json_or_none(record.metadata),
                record.synced_at or synced_at,
            ),
        )
        return rid if cursor.rowcount == 1 else None

    def upsert_health_records(self, records: Sequence[HealthRecord]) -> UpsertSummary:
        """Insert records, leaving any existing row with the same upsert key untouched.

        Re-syncing a record never rewrites its stored value, so values are
        converted exactly once.

        Raises:
            RepositoryError: If the batch could not be written; nothing is committed.
        """
        summary = UpsertSummary()
        if not records:
            return summary

        conn = self._db.connection
        synced_at = utc_now_iso()
        try:
            for record in records:
                rid = self._insert_record(conn, record, synced_at)
                if rid is None:
                    summary.skipped += 1
                else:
                    summary.inserted += 1
                    summary.inserted_ids.append(rid)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to store health records: {exc}") from exc

        logger.info(
            "Stored health records: %d inserted, %d already present",
            summary.inserted, summary.skipped,
        )
        return summary

    def get_health_records(
        self,
        user_id: str,
        *,
        metric_types: Iterable[str] | None = None,
        source_app: str | None = None,
        since: str | None = None,
        until: str | None = None,
        canonical_only: bool = False,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[HealthRecord]:
        """Query a user's records with optional filters.

        Args:
            metric_types: Restrict to these metric types (``None`` = all).
            since: UTC ISO lower bound on ``recorded_at`` (inclusive).
            until: UTC ISO upper bound on ``recorded_at`` (inclusive).
            canonical_only: Only rows currently marked canonical.
            limit: Maximum rows to return.
        """
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]

        if metric_types is not None:
            types = list(metric_types)
            if not types:
                return []
            conditions.append(f"metric_type IN ({', '.join('?' for _ in types)})")
            params.extend(types)
        if source_app:
            conditions.append("source_app = ?")
            params.append(source_app)
        if since:
            conditions.append("recorded_at >= ?")
            params.append(since)
        if until:
            conditions.append("recorded_at <= ?")
            params.append(until)
        if canonical_only:
            conditions.append("is_canonical = 1")

        order = "DESC" if newest_first else "ASC"
        query = (
            f"SELECT * FROM health_records WHERE {' AND '.join(conditions)} "
            f"ORDER BY recorded_at {order}, id {order}"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        try:
            rows = self._db.connection.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to read health records: {exc}") from exc
        return [self._row_to_record(row) for row in rows]

    def count_health_records(self, user_id: str, *, canonical_only: bool = False) -> int:
        query = "SELECT COUNT(*) FROM health_records WHERE user_id = ?"
        if canonical_only:
            query += " AND is_canonical = 1"
        return self._db.connection.execute(query, (user_id,)).fetchone()[0]

    def get_source_metric_types(self, user_id: str, source_app: str) -> list[str]:
        """Metric types a source has contributed for a user."""
        try:
            rows = self._db.connection.execute(
                """SELECT DISTINCT metric_type FROM health_records
                   WHERE user_id = ? AND source_app = ? ORDER BY metric_type""",
                (user_id, source_app),
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to list metric types: {exc}") from exc
        return [row[0] for row in rows]

    def set_canonical_flags(
        self,
        user_id: str,
        metric_type: str,
        canonical_ids: Iterable[str],
        non_canonical_ids: Iterable[str],
    ) -> None:
        """Apply one metric type's canonical assignment in a single transaction.

        Raises:
            RepositoryError: If the update failed; no flag for this metric changed.
        """
        conn = self._db.connection
        try:
            conn.executemany(
                """UPDATE health_records SET is_canonical = 1
                   WHERE id = ? AND user_id = ? AND metric_type = ?""",
                [(rid, user_id, metric_type) for rid in canonical_ids],
            )
            conn.executemany(
                """UPDATE health_records SET is_canonical = 0
                   WHERE id = ? AND user_id = ? AND metric_type = ?""",
                [(rid, user_id, metric_type) for rid in non_canonical_ids],
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(
                f"Failed to update canonical flags for {metric_type}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Health events
    # ------------------------------------------------------------------

    def upsert_health_events(self, events: Sequence[HealthEvent]) -> UpsertSummary:
        """Insert events keyed by (user, event_type, start_time); existing rows win."""
        summary = UpsertSummary()
        if not events:
            return summary

        conn = self._db.connection
        try:
            for event in events:
                eid = event.id or self._new_id()
                cursor = conn.execute(
                    """INSERT INTO health_events (
                        id, user_id, event_type, start_time, end_time, title,
                        description, metrics_json, source_app, source_device, quality_score
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (user_id, event_type, start_time) DO NOTHING""",
                    (
                        eid,
                        event.user_id,
                        event.event_type,
                        event.start_time,
                        event.end_time,
                        event.title,
                        event.description,
                        event.metrics.model_dump_json(exclude_none=True),
                        event.source_app,
                        event.source_device,
                        event.quality_score,
                    ),
                )
                if cursor.rowcount == 1:
                    summary.inserted += 1
                    summary.inserted_ids.append(eid)
                else:
                    summary.skipped += 1
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to store health events: {exc}") from exc

        logger.info("Stored health events: %d inserted, %d already present", summary.inserted, summary.skipped)
        return summary

    def get_health_events(
        self,
        user_id: str,
        *,
        since: str | None = None,
        until: str | None = None,
        event_types: Iterable[str] | None = None,
        limit: int = 50,
    ) -> list[HealthEvent]:
        """Events overlapping [since, until], newest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if since:
            conditions.append("COALESCE(end_time, start_time) >= ?")
            params.append(since)
        if until:
            conditions.append("start_time <= ?")
            params.append(until)
        if event_types is not None:
            types = list(event_types)
            if not types:
                return []
            conditions.append(f"event_type IN ({', '.join('?' for _ in types)})")
            params.extend(types)
        params.append(limit)

        try:
            rows = self._db.connection.execute(
                f"""SELECT * FROM health_events WHERE {' AND '.join(conditions)}
                    ORDER BY start_time DESC LIMIT ?""",
                params,
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to read health events: {exc}") from exc
        return [self._row_to_event(row) for row in rows]

    # ------------------------------------------------------------------
    # Connected sources
    # ------------------------------------------------------------------

    def upsert_connected_source(self, source: ConnectedSource) -> ConnectedSource:
        """Create or update the single connection row for (user, app)."""
        conn = self._db.connection
        now = utc_now_iso()
        try:
            conn.execute(
                """INSERT INTO connected_sources
                   (id, user_id, app_name, app_type, credentials_enc, is_active, connected_at, last_sync)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (user_id, app_name) DO UPDATE SET
                       app_type = excluded.app_type,
                       credentials_enc = COALESCE(excluded.credentials_enc, connected_sources.credentials_enc),
                       is_active = excluded.is_active,
                       last_sync = COALESCE(excluded.last_sync, connected_sources.last_sync)""",
                (
                    source.id or self._new_id(),
                    source.user_id,
                    source.app_name,
                    source.app_type,
                    self._enc.encrypt(source.credentials),
                    1 if source.is_active else 0,
                    source.connected_at or now,
                    source.last_sync,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to store connected source: {exc}") from exc

        logger.info("Upserted connected source %s", source.app_name)
        stored = self.get_connected_source(source.user_id, source.app_name)
        assert stored is not None
        return stored

    def get_connected_source(self, user_id: str, app_name: str) -> ConnectedSource | None:
        row = self._db.connection.execute(
            "SELECT * FROM connected_sources WHERE user_id = ? AND app_name = ?",
            (user_id, app_name),
        ).fetchone()
        return self._row_to_source(row) if row is not None else None

    def get_connected_sources(self, user_id: str) -> list[ConnectedSource]:
        rows = self._db.connection.execute(
            "SELECT * FROM connected_sources WHERE user_id = ? ORDER BY app_name",
            (user_id,),
        ).fetchall()
        return [self._row_to_source(row) for row in rows]

    # ------------------------------------------------------------------
    # Uploaded files
    # ------------------------------------------------------------------

    def save_uploaded_file(
        self,
        uploaded: UploadedFile,
        records: Sequence[HealthRecord] = (),
    ) -> tuple[str, UpsertSummary]:
        """Persist an upload row and its derived records in one transaction.

        Either the file row and every derived record are committed, or
        nothing is.

        Raises:
            RepositoryError: If any insert fails.
        """
        conn = self._db.connection
        fid = uploaded.id or self._new_id()
        now = utc_now_iso()
        summary = UpsertSummary()
        try:
            conn.execute(
                """INSERT INTO uploaded_files (
                    id, user_id, file_name, mime_type, size_bytes, storage_path,
                    extracted_data_enc, extraction_confidence, data_categories_json,
                    date_range_start, date_range_end, summary, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    fid,
                    uploaded.user_id,
                    uploaded.file_name,
                    uploaded.mime_type,
                    uploaded.size_bytes,
                    uploaded.storage_path,
                    self._enc.encrypt(uploaded.extracted_data),
                    uploaded.extraction_confidence,
                    json.dumps(uploaded.data_categories),
                    uploaded.date_range_start,
                    uploaded.date_range_end,
                    uploaded.summary,
                    uploaded.created_at or now,
                ),
            )
            for record in records:
                rid = self._insert_record(conn, record, now)
                if rid is None:
                    summary.skipped += 1
                else:
                    summary.inserted += 1
                    summary.inserted_ids.append(rid)
            conn.commit()
        except (sqlite3.Error, EncryptionError) as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to store uploaded file: {exc}") from exc

        logger.info(
            "Saved uploaded file %s (%d derived records, %d already present)",
            fid, summary.inserted, summary.skipped,
        )
        return fid, summary

    def get_uploaded_file(self, user_id: str, file_id: str) -> UploadedFile | None:
        row = self._db.connection.execute(
            "SELECT * FROM uploaded_files WHERE id = ? AND user_id = ?",
            (file_id, user_id),
        ).fetchone()
        return self._row_to_upload(row) if row is not None else None

    def get_uploaded_files(
        self,
        user_id: str,
        *,
        since: str | None = None,
        until: str | None = None,
        limit: int = 50,
    ) -> list[UploadedFile]:
        """Uploads newest first; with a window, those whose data range overlaps it.

        Files without an extracted date range are matched on upload time.
        """
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if since:
            conditions.append("COALESCE(date_range_end, date_range_start, created_at) >= ?")
            params.append(since)
        if until:
            conditions.append("COALESCE(date_range_start, created_at) <= ?")
            params.append(until)
        params.append(limit)
        try:
            rows = self._db.connection.execute(
                f"""SELECT * FROM uploaded_files WHERE {' AND '.join(conditions)}
                    ORDER BY created_at DESC LIMIT ?""",
                params,
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to read uploaded files: {exc}") from exc
        return [self._row_to_upload(row) for row in rows]

    def delete_uploaded_file(self, user_id: str, file_id: str) -> UploadedFile | None:
        """Delete an upload row; returns the removed row so the caller can purge its blob."""
        existing = self.get_uploaded_file(user_id, file_id)
        if existing is None:
            return None
        conn = self._db.connection
        conn.execute("DELETE FROM uploaded_files WHERE id = ? AND user_id = ?", (file_id, user_id))
        conn.commit()
        logger.info("Deleted uploaded file %s", file_id)
        return existing

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_all_user_data(self, user_id: str) -> UserDataDeletion:
        """Remove everything stored for a user. Returns counts and blob paths."""
        conn = self._db.connection
        result = UserDataDeletion()
        try:
            result.storage_paths = [
                row[0]
                for row in conn.execute(
                    "SELECT storage_path FROM uploaded_files WHERE user_id = ?", (user_id,)
                ).fetchall()
            ]
            result.records = conn.execute(
                "DELETE FROM health_records WHERE user_id = ?", (user_id,)
            ).rowcount
            result.events = conn.execute(
                "DELETE FROM health_events WHERE user_id = ?", (user_id,)
            ).rowcount
            result.sources = conn.execute(
                "DELETE FROM connected_sources WHERE user_id = ?", (user_id,)
            ).rowcount
            # Messages go with their conversation (ON DELETE CASCADE)
            result.conversations = conn.execute(
                "DELETE FROM conversations WHERE user_id = ?", (user_id,)
            ).rowcount
            result.uploaded_files = conn.execute(
                "DELETE FROM uploaded_files WHERE user_id = ?", (user_id,)
            ).rowcount
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to delete user data: {exc}") from exc

        logger.warning("Deleted all data for a user: %d rows", result.total)
        return result

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> HealthRecord:
        return HealthRecord(
            id=row["id"],
            user_id=row["user_id"],
            metric_type=row["metric_type"],
            data_category=row["data_category"],
            value=row["value"],
            unit=row["unit"],
            recorded_at=row["recorded_at"],
            source_app=row["source_app"],
            source_device=row["source_device"],
            quality_score=row["quality_score"],
            is_canonical=bool(row["is_canonical"]),
            description=row["description"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
            synced_at=row["synced_at"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> HealthEvent:
        return HealthEvent(
            id=row["id"],
            user_id=row["user_id"],
            event_type=row["event_type"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            title=row["title"],
            description=row["description"],
            metrics=parse_event_metrics(row["event_type"], json.loads(row["metrics_json"] or "{}")),
            source_app=row["source_app"],
            source_device=row["source_device"],
            quality_score=row["quality_score"],
            created_at=row["created_at"],
        )

    def _row_to_source(self, row: sqlite3.Row) -> ConnectedSource:
        return ConnectedSource(
            id=row["id"],
            user_id=row["user_id"],
            app_name=row["app_name"],
            app_type=row["app_type"],
            credentials=self._enc.decrypt(row["credentials_enc"]),
            is_active=bool(row["is_active"]),
            connected_at=row["connected_at"],
            last_sync=row["last_sync"],
        )

    def _row_to_upload(self, row: sqlite3.Row) -> UploadedFile:
        return UploadedFile(
            id=row["id"],
            user_id=row["user_id"],
            file_name=row["file_name"],
            mime_type=row["mime_type"],
            size_bytes=row["size_bytes"],
            storage_path=row["storage_path"],
            extracted_data=self._enc.decrypt(row["extracted_data_enc"]),
            extraction_confidence=row["extraction_confidence"],
            data_categories=json.loads(row["data_categories_json"] or "[]"),
            date_range_start=row["date_range_start"],
            date_range_end=row["date_range_end"],
            summary=row["summary"],
            created_at=row["created_at"],
        )
