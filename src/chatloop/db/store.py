"""Storage collaborators used at the edges of a chat request."""

import sqlite3
from dataclasses import dataclass
from typing import Any, Protocol

from chatloop.conversation.types import Message
from chatloop.db import queries
from chatloop.db.connection import get_conn
from chatloop.errors import PersistenceError


@dataclass(frozen=True, slots=True)
class Chat:
    id: str
    user_id: str
    title: str
    created_at: str


@dataclass(frozen=True, slots=True)
class Document:
    id: str
    created_at: str
    title: str
    kind: str
    content: str
    user_id: str


class ChatStore(Protocol):
    def save_chat(self, chat_id: str, user_id: str, title: str) -> None: ...

    def get_chat_by_id(self, chat_id: str) -> Chat | None: ...

    def delete_chat_by_id(self, chat_id: str) -> bool: ...

    def save_messages(self, chat_id: str, messages: list[Message]) -> None: ...

    def get_messages_by_chat_id(self, chat_id: str) -> list[Message]: ...


class DocumentStore(Protocol):
    def save_document(
        self, *, document_id: str, title: str, kind: str, content: str, user_id: str
    ) -> Document: ...

    def get_document_by_id(self, document_id: str) -> Document | None: ...

    def save_suggestions(self, suggestions: list[dict[str, Any]]) -> None: ...

    def get_suggestions_by_document_id(self, document_id: str) -> list[dict[str, Any]]: ...


class SqliteChatStore:
    """``ChatStore`` and ``DocumentStore`` over one SQLite file.

    Each call opens its own short-lived connection, so one instance can be
    shared across requests and detached tasks. ``sqlite3`` failures surface as
    ``PersistenceError``.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = path

    def save_chat(self, chat_id: str, user_id: str, title: str) -> None:
        try:
            with get_conn(self.path) as conn:
                queries.save_chat(conn, chat_id, user_id, title)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to save chat {chat_id}: {exc}") from exc

    def get_chat_by_id(self, chat_id: str) -> Chat | None:
        try:
            with get_conn(self.path) as conn:
                row = queries.get_chat_by_id(conn, chat_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to load chat {chat_id}: {exc}") from exc
        return Chat(**row) if row is not None else None

    def delete_chat_by_id(self, chat_id: str) -> bool:
        try:
            with get_conn(self.path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                deleted = queries.delete_chat_by_id(conn, chat_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to delete chat {chat_id}: {exc}") from exc
        return deleted

    def save_messages(self, chat_id: str, messages: list[Message]) -> None:
        if not messages:
            return
        try:
            with get_conn(self.path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                queries.save_messages(conn, chat_id, messages)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to save messages for {chat_id}: {exc}") from exc

    def get_messages_by_chat_id(self, chat_id: str) -> list[Message]:
        try:
            with get_conn(self.path) as conn:
                return queries.get_messages_by_chat_id(conn, chat_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to load messages for {chat_id}: {exc}") from exc

    def save_document(
        self, *, document_id: str, title: str, kind: str, content: str, user_id: str
    ) -> Document:
        try:
            with get_conn(self.path) as conn:
                created_at = queries.save_document(
                    conn,
                    document_id=document_id,
                    title=title,
                    kind=kind,
                    content=content,
                    user_id=user_id,
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to save document {document_id}: {exc}") from exc
        return Document(
            id=document_id,
            created_at=created_at,
            title=title,
            kind=kind,
            content=content,
            user_id=user_id,
        )

    def get_document_by_id(self, document_id: str) -> Document | None:
        try:
            with get_conn(self.path) as conn:
                row = queries.get_document_by_id(conn, document_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to load document {document_id}: {exc}") from exc
        return Document(**row) if row is not None else None

    def save_suggestions(self, suggestions: list[dict[str, Any]]) -> None:
        if not suggestions:
            return
        try:
            with get_conn(self.path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                queries.save_suggestions(conn, suggestions)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to save suggestions: {exc}") from exc

    def get_suggestions_by_document_id(self, document_id: str) -> list[dict[str, Any]]:
        try:
            with get_conn(self.path) as conn:
                return queries.get_suggestions_by_document_id(conn, document_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to load suggestions: {exc}") from exc
