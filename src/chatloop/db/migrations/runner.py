"""Plain-SQL migration runner.

Files in this directory named ``NNN_*.sql`` are applied once each, in name
order, and recorded in ``schema_migrations``. A single-row lock table keeps
two processes from migrating the same database at the same time.
"""

import os
import sqlite3
from pathlib import Path

from chatloop.db.connection import get_conn

MIGRATIONS_DIR = Path(__file__).resolve().parent


def _holder() -> str:
    return f"{os.uname().nodename}:{os.getpid()}"


def _prepare(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations("
        "name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migration_lock("
        "id INTEGER PRIMARY KEY CHECK(id=1), holder TEXT, acquired_at TEXT)"
    )
    conn.execute("INSERT OR IGNORE INTO schema_migration_lock(id) VALUES(1)")


def _acquire_lock(conn: sqlite3.Connection, holder: str) -> None:
    row = conn.execute("SELECT holder FROM schema_migration_lock WHERE id=1").fetchone()
    current = str(row[0]) if row and row[0] else ""
    if current and current != holder:
        raise RuntimeError(f"migration lock held by {current}")
    conn.execute(
        "UPDATE schema_migration_lock SET holder=?, acquired_at=datetime('now') WHERE id=1",
        (holder,),
    )


def pending_migrations(conn: sqlite3.Connection) -> list[Path]:
    applied = {row[0] for row in conn.execute("SELECT name FROM schema_migrations")}
    return [path for path in sorted(MIGRATIONS_DIR.glob("*.sql")) if path.name not in applied]


def run_migrations(path: str | None = None) -> list[str]:
    """Apply outstanding migrations and return the names that ran."""
    applied_now: list[str] = []
    with get_conn(path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            _prepare(conn)
            _acquire_lock(conn, _holder())
            for file in pending_migrations(conn):
                # executescript would COMMIT the open transaction first
                for statement in _split_statements(file.read_text()):
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_migrations(name, applied_at) VALUES(?, datetime('now'))",
                    (file.name,),
                )
                applied_now.append(file.name)
            conn.execute(
                "UPDATE schema_migration_lock SET holder=NULL, acquired_at=NULL WHERE id=1"
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return applied_now


def _split_statements(script: str) -> list[str]:
    statements: list[str] = []
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            if buffer.strip():
                statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


if __name__ == "__main__":
    run_migrations()
