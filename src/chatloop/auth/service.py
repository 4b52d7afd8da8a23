"""Token-based session authentication."""

import hashlib
import secrets
import sqlite3
from datetime import UTC, datetime, timedelta

from chatloop.config import get_settings
from chatloop.db.queries import ensure_user
from chatloop.ids import new_id


def _token_hash(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def create_session(conn: sqlite3.Connection, user_id: str, role: str = "user") -> tuple[str, str]:
    """Store a new session and return ``(session_id, raw_token)``.

    Only the token's hash is stored; the raw token is shown once.
    """
    settings = get_settings()
    session_id = new_id("wss")
    raw_token = secrets.token_urlsafe(48)
    created_at = datetime.now(UTC)
    expires_at = created_at + timedelta(hours=max(1, settings.web_auth_token_ttl_hours))
    conn.execute(
        "INSERT INTO web_sessions(id, user_id, role, token_hash, created_at, expires_at) "
        "VALUES(?,?,?,?,?,?)",
        (
            session_id,
            user_id,
            role,
            _token_hash(raw_token),
            created_at.isoformat(),
            expires_at.isoformat(),
        ),
    )
    return session_id, raw_token


def issue_token(conn: sqlite3.Connection, external_id: str, role: str = "user") -> tuple[str, str]:
    """Create the user if needed and return ``(user_id, raw_token)``."""
    user_id = ensure_user(conn, external_id, role)
    _, raw_token = create_session(conn, user_id, role)
    return user_id, raw_token


def validate_token(conn: sqlite3.Connection, raw_token: str) -> tuple[str, str] | None:
    row = conn.execute(
        "SELECT id, user_id, role, expires_at FROM web_sessions WHERE token_hash=? LIMIT 1",
        (_token_hash(raw_token),),
    ).fetchone()
    if row is None:
        return None

    try:
        expires_at = datetime.fromisoformat(str(row["expires_at"]))
    except ValueError:
        conn.execute("DELETE FROM web_sessions WHERE id=?", (str(row["id"]),))
        return None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    if expires_at <= datetime.now(UTC):
        conn.execute("DELETE FROM web_sessions WHERE id=?", (str(row["id"]),))
        return None

    return str(row["user_id"]), str(row["role"])
