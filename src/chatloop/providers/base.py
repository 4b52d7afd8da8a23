"""Provider contracts."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal, Protocol

DeltaKind = Literal["text", "reasoning", "tool_call", "finish"]


@dataclass(slots=True)
class ToolCallRequest:
    call_id: str
    name: str
    # None when the model produced argument text that is not a JSON object
    arguments: dict[str, Any] | None
    raw_arguments: str = ""


@dataclass(slots=True)
class ModelDelta:
    kind: DeltaKind
    text: str = ""
    tool_call: ToolCallRequest | None = None
    finish_reason: str | None = None

    @classmethod
    def text_delta(cls, text: str) -> "ModelDelta":
        return cls(kind="text", text=text)

    @classmethod
    def reasoning_delta(cls, text: str) -> "ModelDelta":
        return cls(kind="reasoning", text=text)

    @classmethod
    def call(cls, tool_call: ToolCallRequest) -> "ModelDelta":
        return cls(kind="tool_call", tool_call=tool_call)

    @classmethod
    def finish(cls, reason: str | None) -> "ModelDelta":
        return cls(kind="finish", finish_reason=reason)


@dataclass(slots=True)
class GeneratedImage:
    data: bytes
    media_type: str = "image/png"


class LanguageProvider(Protocol):
    model: str

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ModelDelta]: ...

    async def complete(self, messages: list[dict[str, Any]]) -> str: ...

    async def health_check(self) -> bool: ...


class ImageProvider(Protocol):
    async def generate(self, model: str, prompt: str, size: str) -> GeneratedImage: ...
