from __future__ import annotations

import sqlite3
from typing import Any

from .database import SQLiteMemoryDB
from .time_utils import to_iso, utc_now

SENDER_USER = "User"
SENDER_BOT = "Bot"


def _message_row(row: Any) -> dict[str, Any]:
    return {
        "message_id": row["message_id"],
        "user_id": row["user_id"],
        "message_text": row["message_text"],
        "sender_type": row["sender_type"],
        "timestamp": row["timestamp"],
        "intent": row["intent"],
    }


def _insert_message(
    conn: sqlite3.Connection,
    user_id: int,
    message_text: str,
    sender_type: str,
    created_at: str,
    intent: str | None,
) -> dict[str, Any]:
    cursor = conn.execute(
        """
        INSERT INTO chat_messages (user_id, message_text, sender_type, timestamp, intent)
        VALUES (?, ?, ?, ?, ?)
        """,
        (user_id, message_text, sender_type, created_at, intent),
    )
    return {
        "message_id": cursor.lastrowid,
        "user_id": user_id,
        "message_text": message_text,
        "sender_type": sender_type,
        "timestamp": created_at,
        "intent": intent,
    }


class ConversationStore:
    """Append-only chat transcript keyed by (user_id, timestamp)."""

    def __init__(self, db: SQLiteMemoryDB) -> None:
        self._db = db

    def append_message(
        self,
        *,
        user_id: int,
        message_text: str,
        sender_type: str,
        intent: str | None = None,
        timestamp: str | None = None,
    ) -> dict[str, Any]:
        if sender_type not in {SENDER_USER, SENDER_BOT}:
            raise ValueError(f"Unsupported sender type: {sender_type}")
        created_at = timestamp or to_iso(utc_now())
        with self._db.connection() as conn:
            return _insert_message(conn, user_id, message_text, sender_type, created_at, intent)

    def post_reminder(
        self,
        reminder_id: int,
        *,
        user_id: int,
        message_text: str,
        intent: str,
    ) -> dict[str, Any] | None:
        """Post a reminder as a Bot turn and mark it Sent in one transaction.

        Returns ``None`` when the reminder is no longer Pending; nothing is written then.
        """
        with self._db.connection() as conn:
            claimed = conn.execute(
                "UPDATE reminders SET status = 'Sent' WHERE reminder_id = ? AND status = 'Pending'",
                (reminder_id,),
            ).rowcount
            if not claimed:
                return None
            return _insert_message(conn, user_id, message_text, SENDER_BOT, to_iso(utc_now()), intent)

    def recent_messages(
        self,
        user_id: int,
        limit: int = 20,
        *,
        exclude_message_id: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return the newest ``limit`` messages for a user, oldest first."""
        params: list[Any] = [user_id]
        sql = """
            SELECT message_id, user_id, message_text, sender_type, timestamp, intent
            FROM chat_messages
            WHERE user_id = ?
        """
        if exclude_message_id is not None:
            sql += " AND message_id != ?"
            params.append(exclude_message_id)
        sql += " ORDER BY timestamp DESC, message_id DESC LIMIT ?"
        params.append(max(0, limit))

        with self._db.connection() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [_message_row(row) for row in reversed(rows)]

    def count_messages(self, user_id: int) -> int:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM chat_messages WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return int(row["total"])
