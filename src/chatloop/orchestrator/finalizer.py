"""Prepare response messages for storage and persist them best-effort."""

import asyncio
import logging
from typing import Any

from chatloop.conversation.types import Message, ToolInvocation
from chatloop.db.store import ChatStore

logger = logging.getLogger(__name__)

REDACTED = "redacted-for-length"
_BINARY_KEYS = frozenset({"image", "base64", "b64_json"})


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return REDACTED if value.startswith("data:") else value
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    if isinstance(value, dict):
        return {
            key: (
                REDACTED
                if key in _BINARY_KEYS and isinstance(item, str) and item
                else _redact_value(item)
            )
            for key, item in value.items()
        }
    return value


def _redacted_copy(invocation: ToolInvocation) -> ToolInvocation:
    return ToolInvocation(
        tool_call_id=invocation.tool_call_id,
        tool_name=invocation.tool_name,
        args=dict(invocation.args),
        state=invocation.state,
        result=(
            _redact_value(invocation.result)
            if invocation.state == "result"
            else invocation.result
        ),
        error=invocation.error,
    )


def _with_invocations(message: Message, invocations: list[ToolInvocation]) -> Message:
    return Message(
        id=message.id,
        role=message.role,
        content=message.content,
        tool_invocations=invocations,
        reasoning=message.reasoning,
        created_at=message.created_at,
    )


def redact_tool_payloads(messages: list[Message]) -> list[Message]:
    """Return copies of ``messages`` with embedded binary payloads replaced.

    Inline ``data:`` URLs and base64 image fields can be orders of magnitude
    larger than the surrounding text, so they are neither stored nor sent
    back to the model. Settled invocations in the input are left untouched,
    and applying this twice gives the same result.
    """
    return [
        _with_invocations(message, [_redacted_copy(item) for item in message.tool_invocations])
        for message in messages
    ]


def sanitize_response_messages(
    messages: list[Message], reasoning: str | None = None
) -> list[Message]:
    """Return the subset of ``messages`` that is worth storing.

    Unsettled tool invocations are dropped, messages left with neither text
    nor invocations are dropped, and the reasoning trace is attached to the
    last assistant message. The input messages are not modified.
    """
    sanitized: list[Message] = []
    for message in messages:
        invocations = [_redacted_copy(item) for item in message.tool_invocations if item.settled]
        if not message.content.strip() and not invocations and not message.reasoning:
            continue
        sanitized.append(_with_invocations(message, invocations))
    if reasoning:
        last_assistant = next((m for m in reversed(sanitized) if m.role == "assistant"), None)
        if last_assistant is not None:
            last_assistant.reasoning = reasoning
    return sanitized


class ResponseFinalizer:
    """Persist the finished response once the client has its stream.

    Failures are logged and dropped here; by the time this runs the user has
    already received the response.
    """

    def __init__(self, store: ChatStore) -> None:
        self.store = store

    async def persist(
        self, chat_id: str, messages: list[Message], reasoning: str | None = None
    ) -> list[Message]:
        try:
            sanitized = sanitize_response_messages(messages, reasoning)
            await asyncio.to_thread(self.store.save_messages, chat_id, sanitized)
        except Exception:
            logger.exception("finalizer.persist_failed chat_id=%s", chat_id)
            return []
        logger.info("finalizer.persisted chat_id=%s messages=%d", chat_id, len(sanitized))
        return sanitized
