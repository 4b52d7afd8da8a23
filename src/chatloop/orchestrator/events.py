"""Stream events delivered to the client, one JSON object per line."""

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class TextDelta:
    step: int
    text: str


@dataclass(frozen=True, slots=True)
class ReasoningDelta:
    step: int
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallStart:
    step: int
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    step: int
    tool_call_id: str
    tool_name: str
    result: Any


@dataclass(frozen=True, slots=True)
class ToolCallError:
    step: int
    tool_call_id: str
    tool_name: str
    error: str


@dataclass(frozen=True, slots=True)
class StreamError:
    step: int
    message: str
    # logged by the merger, never sent to the client
    detail: str = ""


@dataclass(frozen=True, slots=True)
class StreamEnd:
    step: int
    finish_reason: str = "stop"


StreamEvent = (
    TextDelta
    | ReasoningDelta
    | ToolCallStart
    | ToolCallResult
    | ToolCallError
    | StreamError
    | StreamEnd
)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, StreamError | StreamEnd)


def to_wire(event: StreamEvent) -> dict[str, Any]:
    if isinstance(event, TextDelta):
        return {"type": "text-delta", "step": event.step, "text": event.text}
    if isinstance(event, ReasoningDelta):
        return {"type": "reasoning-delta", "step": event.step, "text": event.text}
    if isinstance(event, ToolCallStart):
        return {
            "type": "tool-call-start",
            "step": event.step,
            "toolCallId": event.tool_call_id,
            "toolName": event.tool_name,
            "args": event.args,
        }
    if isinstance(event, ToolCallResult):
        return {
            "type": "tool-call-result",
            "step": event.step,
            "toolCallId": event.tool_call_id,
            "toolName": event.tool_name,
            "result": event.result,
        }
    if isinstance(event, ToolCallError):
        return {
            "type": "tool-call-error",
            "step": event.step,
            "toolCallId": event.tool_call_id,
            "toolName": event.tool_name,
            "error": event.error,
        }
    if isinstance(event, StreamError):
        return {"type": "error", "step": event.step, "error": event.message}
    if isinstance(event, StreamEnd):
        return {"type": "finish", "step": event.step, "finishReason": event.finish_reason}
    raise TypeError(f"not a stream event: {event!r}")


def encode_ndjson(event: StreamEvent) -> bytes:
    return (json.dumps(to_wire(event), ensure_ascii=False, default=str) + "\n").encode("utf-8")
