"""Conversation and message persistence.

Conversations are append-only apart from title edits. A conversation's
``updated_at`` is derived from its newest message, never stored.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import Any

from youphoria.core.storage.database import HealthDatabase
from youphoria.core.storage.models import Conversation, Message, utc_now_iso
from youphoria.core.storage.repository import RepositoryError

logger = logging.getLogger(__name__)

_CONVERSATION_SELECT = """
SELECT c.id, c.user_id, c.title, c.created_at,
       COALESCE(MAX(m.created_at), c.created_at) AS updated_at,
       COUNT(m.id) AS message_count
FROM conversations c
LEFT JOIN messages m ON m.conversation_id = c.id
"""

VALID_ROLES = ("user", "assistant")


class ConversationRepository:
    """CRUD for conversations and their messages, scoped by owner."""

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, user_id: str, title: str) -> Conversation:
        conn = self._db.connection
        cid = str(uuid.uuid4())
        now = utc_now_iso()
        try:
            conn.execute(
                "INSERT INTO conversations (id, user_id, title, created_at) VALUES (?, ?, ?, ?)",
                (cid, user_id, title, now),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to create conversation: {exc}") from exc
        logger.info("Created conversation %s", cid)
        return Conversation(id=cid, user_id=user_id, title=title, created_at=now, updated_at=now)

    def get_conversation(self, user_id: str, conversation_id: str) -> Conversation | None:
        """Fetch a conversation only if ``user_id`` owns it."""
        row = self._db.connection.execute(
            _CONVERSATION_SELECT + " WHERE c.id = ? AND c.user_id = ? GROUP BY c.id",
            (conversation_id, user_id),
        ).fetchone()
        return self._row_to_conversation(row) if row is not None else None

    def list_conversations(self, user_id: str, *, limit: int = 50) -> list[Conversation]:
        """Conversations ordered by most recent activity."""
        rows = self._db.connection.execute(
            _CONVERSATION_SELECT
            + " WHERE c.user_id = ? GROUP BY c.id ORDER BY updated_at DESC, c.rowid DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [self._row_to_conversation(row) for row in rows]

    def rename_conversation(self, user_id: str, conversation_id: str, title: str) -> Conversation | None:
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE conversations SET title = ? WHERE id = ? AND user_id = ?",
            (title, conversation_id, user_id),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_conversation(user_id, conversation_id)

    def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            "DELETE FROM conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id),
        )
        conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted conversation %s", conversation_id)
        return deleted

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message and commit it immediately.

        Raises:
            ValueError: If ``role`` is not ``user`` or ``assistant``.
            RepositoryError: If the insert failed.
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid message role: {role!r}")
        conn = self._db.connection
        mid = str(uuid.uuid4())
        now = utc_now_iso()
        try:
            conn.execute(
                """INSERT INTO messages (id, conversation_id, role, content, metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    mid,
                    conversation_id,
                    role,
                    content,
                    json.dumps(metadata, separators=(",", ":"), default=str) if metadata else None,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to save {role} message: {exc}") from exc
        return Message(
            id=mid,
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata or {},
            created_at=now,
        )

    def get_messages(self, conversation_id: str, *, limit: int | None = None) -> list[Message]:
        """Messages in chronological order; with ``limit``, the most recent ``limit``."""
        if limit is None:
            rows = self._db.connection.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at, rowid",
                (conversation_id,),
            ).fetchall()
        else:
            rows = self._db.connection.execute(
                """SELECT * FROM (
                       SELECT *, rowid AS seq FROM messages WHERE conversation_id = ?
                       ORDER BY created_at DESC, rowid DESC LIMIT ?
                   ) ORDER BY created_at, seq""",
                (conversation_id, limit),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row["message_count"],
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
            created_at=row["created_at"],
        )
