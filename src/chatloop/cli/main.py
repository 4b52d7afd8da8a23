"""Click CLI group: migrate, issue-token and ask commands."""

from __future__ import annotations

import asyncio
import os
import socket
import sys

import click

from chatloop.auth.dependencies import UserContext
from chatloop.auth.service import issue_token as issue_session_token
from chatloop.config import get_settings
from chatloop.db.connection import get_conn
from chatloop.db.migrations.runner import run_migrations
from chatloop.db.queries import ensure_user
from chatloop.db.store import SqliteChatStore
from chatloop.errors import ChatloopError
from chatloop.ids import new_uuid
from chatloop.logging import configure_logging
from chatloop.orchestrator.events import ReasoningDelta, StreamError, TextDelta, encode_ndjson
from chatloop.services.chat import ChatMessageInput, ChatRequest, ChatService
from chatloop.tasks.detached import DetachedTasks


def default_cli_user() -> str:
    user = os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"
    host = socket.gethostname() or "local"
    return f"cli:{user}@{host}"


@click.group()
def cli() -> None:
    """Chatloop streaming chat service CLI."""


@cli.command()
def migrate() -> None:
    """Apply outstanding database migrations."""
    applied = run_migrations()
    if not applied:
        click.echo("database is up to date")
    for name in applied:
        click.echo(f"applied {name}")


@cli.command("issue-token")
@click.argument("user_id")
@click.option("--role", type=click.Choice(["user", "admin"]), default="user", show_default=True)
def issue_token(user_id: str, role: str) -> None:
    """Create USER_ID if needed and print a new session token."""
    run_migrations()
    with get_conn() as conn:
        internal_id, raw_token = issue_session_token(conn, user_id, role)
    click.echo(f"user: {internal_id}", err=True)
    click.echo(raw_token)


async def _run_ask(
    prompt: str,
    *,
    model: str | None,
    chat_id: str,
    user: UserContext,
    text_only: bool,
) -> int:
    tasks = DetachedTasks()
    service = ChatService(get_settings(), SqliteChatStore(), tasks=tasks)
    request = ChatRequest(
        id=chat_id,
        messages=[ChatMessageInput(role="user", content=prompt)],
        selected_chat_model=model or "",
    )
    exit_code = 0
    events = await service.handle(request, user)
    async for event in events:
        if isinstance(event, StreamError):
            exit_code = 1
        if not text_only:
            sys.stdout.write(encode_ndjson(event).decode("utf-8"))
        elif isinstance(event, TextDelta):
            sys.stdout.write(event.text)
        elif isinstance(event, ReasoningDelta):
            continue
        elif isinstance(event, StreamError):
            click.echo(f"\n{event.message}", err=True)
        sys.stdout.flush()
    if text_only:
        sys.stdout.write("\n")
    await tasks.shutdown(timeout_s=get_settings().detached_shutdown_timeout_seconds)
    return exit_code


@cli.command()
@click.argument("prompt")
@click.option("--model", type=str, default=None, help="Selected chat model id.")
@click.option("--chat-id", type=str, default=None, help="Continue into this chat id.")
@click.option(
    "--user-id",
    type=str,
    default=default_cli_user,
    show_default="cli:<local-user>@<host>",
    help="External user id that owns the chat.",
)
@click.option("--text", "text_only", is_flag=True, help="Print only the assistant text.")
def ask(
    prompt: str,
    model: str | None,
    chat_id: str | None,
    user_id: str,
    text_only: bool,
) -> None:
    """Run one prompt through the chat engine and print the event stream."""
    settings = get_settings()
    configure_logging("WARNING" if text_only else settings.log_level)
    run_migrations()
    with get_conn() as conn:
        internal_id = ensure_user(conn, user_id)
    try:
        exit_code = asyncio.run(
            _run_ask(
                prompt,
                model=model,
                chat_id=chat_id or new_uuid(),
                user=UserContext(user_id=internal_id, role="user"),
                text_only=text_only,
            )
        )
    except ChatloopError as exc:
        raise click.ClickException(str(exc)) from exc
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    cli()
