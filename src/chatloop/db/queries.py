"""Query helpers for chats, messages, documents and suggestions."""

import sqlite3
from datetime import UTC, datetime
from typing import Any

from chatloop.conversation.types import Message
from chatloop.ids import new_id


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _parse_ts(raw: object) -> datetime:
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return datetime.now(UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)


def ensure_user(conn: sqlite3.Connection, external_id: str, role: str = "user") -> str:
    row = conn.execute(
        "SELECT id FROM users WHERE external_id=? LIMIT 1", (external_id,)
    ).fetchone()
    if row is not None:
        return str(row["id"])
    user_id = new_id("usr")
    conn.execute(
        "INSERT INTO users(id, external_id, role, created_at) VALUES(?,?,?,?)",
        (user_id, external_id, role, now_iso()),
    )
    return user_id


def save_chat(conn: sqlite3.Connection, chat_id: str, user_id: str, title: str) -> None:
    conn.execute(
        "INSERT INTO chats(id, user_id, title, created_at) VALUES(?,?,?,?)",
        (chat_id, user_id, title, now_iso()),
    )


def get_chat_by_id(conn: sqlite3.Connection, chat_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, user_id, title, created_at FROM chats WHERE id=? LIMIT 1", (chat_id,)
    ).fetchone()
    return dict(row) if row is not None else None


def delete_chat_by_id(conn: sqlite3.Connection, chat_id: str) -> bool:
    conn.execute("DELETE FROM messages WHERE chat_id=?", (chat_id,))
    cursor = conn.execute("DELETE FROM chats WHERE id=?", (chat_id,))
    return cursor.rowcount > 0


def save_messages(conn: sqlite3.Connection, chat_id: str, messages: list[Message]) -> None:
    # ON CONFLICT keeps the original rowid, which breaks created_at ties on read.
    # An id already owned by another chat is left as it is.
    conn.executemany(
        """
        INSERT INTO messages(id, chat_id, role, content, created_at)
        VALUES(?,?,?,?,?)
        ON CONFLICT(id) DO UPDATE SET content=excluded.content
        WHERE messages.chat_id=excluded.chat_id
        """,
        [
            (m.id, chat_id, m.role, m.content_json(), m.created_at.isoformat())
            for m in messages
        ],
    )


def get_messages_by_chat_id(conn: sqlite3.Connection, chat_id: str) -> list[Message]:
    rows = conn.execute(
        "SELECT id, role, content, created_at FROM messages "
        "WHERE chat_id=? ORDER BY created_at ASC, rowid ASC",
        (chat_id,),
    ).fetchall()
    return [
        Message.from_record(
            message_id=str(row["id"]),
            role=str(row["role"]),
            content=str(row["content"]),
            created_at=_parse_ts(row["created_at"]),
        )
        for row in rows
    ]


def save_document(
    conn: sqlite3.Connection,
    *,
    document_id: str,
    title: str,
    kind: str,
    content: str,
    user_id: str,
) -> str:
    """Insert a new version of a document and return its ``created_at``."""
    created_at = now_iso()
    conn.execute(
        "INSERT INTO documents(id, created_at, title, kind, content, user_id) "
        "VALUES(?,?,?,?,?,?)",
        (document_id, created_at, title, kind, content, user_id),
    )
    return created_at


def get_document_by_id(conn: sqlite3.Connection, document_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, created_at, title, kind, content, user_id FROM documents "
        "WHERE id=? ORDER BY created_at DESC LIMIT 1",
        (document_id,),
    ).fetchone()
    return dict(row) if row is not None else None


def save_suggestions(conn: sqlite3.Connection, suggestions: list[dict[str, Any]]) -> None:
    created_at = now_iso()
    conn.executemany(
        """
        INSERT INTO suggestions(
          id, document_id, document_created_at, original_text, suggested_text,
          description, is_resolved, user_id, created_at
        ) VALUES(?,?,?,?,?,?,0,?,?)
        """,
        [
            (
                item["id"],
                item["document_id"],
                item["document_created_at"],
                item["original_text"],
                item["suggested_text"],
                item.get("description"),
                item["user_id"],
                created_at,
            )
            for item in suggestions
        ],
    )


def get_suggestions_by_document_id(
    conn: sqlite3.Connection, document_id: str
) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT id, document_id, document_created_at, original_text, suggested_text, "
        "description, is_resolved, user_id, created_at FROM suggestions "
        "WHERE document_id=? ORDER BY created_at ASC, rowid ASC",
        (document_id,),
    ).fetchall()
    return [dict(row) for row in rows]
