"""Audit logger: PHI-free access and disclosure trail.

Every time health data is sent to an external model (chat replies, document
extraction) and every deletion is recorded in ``audit_log``:

* ``input_hash``    SHA-256 of canonical JSON, never the raw input.
* ``llm_disclosed`` whether the user's data left the server.
* ``resource_id``   conversation, upload or other affected object.

Audit writes never break the operation being audited; a failed write is
logged and dropped.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from youphoria.core.storage.database import DatabaseError, HealthDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 of canonical JSON, or "" if ``data`` is not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'llm_disclosure' | 'data_access' | 'data_delete' | 'operation'
    operation: str = ""                  # e.g. 'chat.send_message', 'upload.ingest'
    user_id: str | None = None
    input_hash: str = ""
    llm_provider: str | None = None
    llm_disclosed: bool = False
    resource_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` table.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_llm_disclosure(
            operation="chat.send_message",
            user_id=session.user_id,
            llm_provider="gemini",
            input_data={"message": message},
            resource_id=conversation_id,
        )
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event. Returns its id, or "" if the write failed."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, user_id, action, operation, input_hash,
                    llm_provider, llm_disclosed, resource_id,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.user_id,
                    event.action,
                    event.operation or None,
                    event.input_hash or None,
                    event.llm_provider,
                    1 if event.llm_disclosed else 0,
                    event.resource_id,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except (sqlite3.Error, DatabaseError):
            logger.exception("Failed to write audit event, event lost")
            return ""

        return event_id

    def log_operation(
        self,
        operation: str,
        *,
        user_id: str | None = None,
        input_data: Any = None,
        resource_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log an API or MCP operation that touched health data."""
        return self.log_event(AuditEvent(
            action="operation",
            operation=operation,
            user_id=user_id,
            input_hash=_hash_input(input_data) if input_data else "",
            resource_id=resource_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_llm_disclosure(
        self,
        *,
        operation: str,
        user_id: str,
        llm_provider: str,
        input_data: Any = None,
        resource_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log that user data was sent to an external model.

        The mock provider never leaves the process, so it is logged with
        ``llm_disclosed = False``.
        """
        return self.log_event(AuditEvent(
            action="llm_disclosure",
            operation=operation,
            user_id=user_id,
            input_hash=_hash_input(input_data) if input_data else "",
            llm_provider=llm_provider,
            llm_disclosed=llm_provider != "mock",
            resource_id=resource_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_data_delete(
        self,
        *,
        operation: str = "",
        user_id: str | None = None,
        resource_id: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a data deletion event."""
        return self.log_event(AuditEvent(
            action="data_delete",
            operation=operation,
            user_id=user_id,
            resource_id=resource_id,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        user_id: str | None = None,
        action: str | None = None,
        operation: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if action:
            conditions.append("action = ?")
            params.append(action)
        if operation:
            conditions.append("operation = ?")
            params.append(operation)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, user_id: str | None = None) -> int:
        if user_id:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE user_id = ?", (user_id,)
            ).fetchone()
        else:
            row = self._db.connection.execute("SELECT COUNT(*) FROM audit_log").fetchone()
        return row[0]

    def count_disclosures(self, *, user_id: str | None = None) -> int:
        """How many times this user's data was sent to an external model."""
        if user_id:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE llm_disclosed = 1 AND user_id = ?",
                (user_id,),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE llm_disclosed = 1"
            ).fetchone()
        return row[0]
