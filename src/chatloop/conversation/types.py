"""Conversation data model shared by the step loop, finalizer and storage."""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from chatloop.ids import new_uuid

Role = Literal["user", "assistant", "tool"]
InvocationState = Literal["call", "result", "error"]

_ROLES: frozenset[str] = frozenset({"user", "assistant", "tool"})


@dataclass(slots=True)
class ToolInvocation:
    """One tool call requested by the model.

    Created in the ``call`` state and settled exactly once, either with a
    result or an error. Settled invocations are never modified again.
    """

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    state: InvocationState = "call"
    result: Any = None
    error: str | None = None

    @property
    def settled(self) -> bool:
        return self.state != "call"

    def resolve(self, result: Any) -> None:
        self._ensure_pending()
        self.state = "result"
        self.result = result

    def fail(self, error: str) -> None:
        self._ensure_pending()
        self.state = "error"
        self.error = error

    def _ensure_pending(self) -> None:
        if self.settled:
            raise RuntimeError(f"tool invocation {self.tool_call_id} already settled")

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
            "state": self.state,
        }
        if self.state == "result":
            record["result"] = self.result
        elif self.state == "error":
            record["error"] = self.error
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ToolInvocation":
        state = record.get("state", "call")
        if state not in {"call", "result", "error"}:
            # partial-call and other client-side states are not settled
            state = "call"
        args = record.get("args")
        return cls(
            tool_call_id=str(record.get("toolCallId", "")),
            tool_name=str(record.get("toolName", "")),
            args=args if isinstance(args, dict) else {},
            state=state,
            result=record.get("result") if state == "result" else None,
            error=str(record.get("error")) if state == "error" else None,
        )


@dataclass(slots=True)
class Message:
    role: Role
    content: str = ""
    id: str = field(default_factory=new_uuid)
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    reasoning: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_record(self) -> dict[str, Any]:
        """JSON shape stored in the ``messages.content`` column."""
        record: dict[str, Any] = {"text": self.content}
        if self.tool_invocations:
            record["toolInvocations"] = [item.to_record() for item in self.tool_invocations]
        if self.reasoning:
            record["reasoning"] = self.reasoning
        return record

    def content_json(self) -> str:
        return json.dumps(self.to_record(), ensure_ascii=False)

    @classmethod
    def from_record(
        cls,
        *,
        message_id: str,
        role: str,
        content: str,
        created_at: datetime | None = None,
    ) -> "Message":
        try:
            decoded = json.loads(content)
        except json.JSONDecodeError:
            decoded = content
        if not isinstance(decoded, dict):
            decoded = {"text": decoded if isinstance(decoded, str) else content}
        invocations_raw = decoded.get("toolInvocations")
        invocations = (
            [ToolInvocation.from_record(item) for item in invocations_raw if isinstance(item, dict)]
            if isinstance(invocations_raw, list)
            else []
        )
        reasoning = decoded.get("reasoning")
        return cls(
            id=message_id,
            role=_coerce_role(role),
            content=str(decoded.get("text", "")),
            tool_invocations=invocations,
            reasoning=reasoning if isinstance(reasoning, str) and reasoning else None,
            created_at=created_at or datetime.now(UTC),
        )


def _coerce_role(role: str) -> Role:
    if role not in _ROLES:
        raise ValueError(f"unsupported message role: {role}")
    return role  # type: ignore[return-value]


class Conversation:
    """Append-only ordered message history for one request."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def most_recent_user_message(self) -> Message | None:
        return next((m for m in reversed(self._messages) if m.role == "user"), None)


def to_provider_messages(system_prompt: str, messages: list[Message]) -> list[dict[str, Any]]:
    """Render history into OpenAI-style chat messages.

    Assistant tool calls are followed by one ``tool`` message per settled
    invocation. Unsettled invocations never reach the model.
    """
    rendered: list[dict[str, Any]] = []
    if system_prompt.strip():
        rendered.append({"role": "system", "content": system_prompt})
    for message in messages:
        settled = [item for item in message.tool_invocations if item.settled]
        if message.role == "user":
            rendered.append({"role": "user", "content": message.content})
            continue
        if message.role == "tool":
            for item in settled:
                rendered.append(_tool_result_message(item))
            continue
        entry: dict[str, Any] = {"role": "assistant", "content": message.content}
        if settled:
            entry["tool_calls"] = [
                {
                    "id": item.tool_call_id,
                    "type": "function",
                    "function": {
                        "name": item.tool_name,
                        "arguments": json.dumps(item.args, ensure_ascii=False),
                    },
                }
                for item in settled
            ]
        if entry["content"] or settled:
            rendered.append(entry)
        for item in settled:
            rendered.append(_tool_result_message(item))
    return rendered


def _tool_result_message(item: ToolInvocation) -> dict[str, Any]:
    payload = item.result if item.state == "result" else {"error": item.error}
    return {
        "role": "tool",
        "tool_call_id": item.tool_call_id,
        "content": json.dumps(payload, ensure_ascii=False, default=str),
    }
