"""Streaming provider adapter for OpenAI-compatible chat completions APIs."""

import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from chatloop.errors import ProviderError
from chatloop.ids import new_id
from chatloop.providers.base import DeltaKind, ModelDelta, ToolCallRequest

logger = logging.getLogger(__name__)

_THINK_OPEN = "<think>"
_THINK_CLOSE = "</think>"


@dataclass(slots=True)
class _PendingCall:
    call_id: str = ""
    name: str = ""
    argument_parts: list[str] = field(default_factory=list)

    def build(self) -> ToolCallRequest:
        raw = "".join(self.argument_parts)
        arguments: dict[str, Any] | None
        if not raw.strip():
            arguments = {}
        else:
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                decoded = None
            arguments = decoded if isinstance(decoded, dict) else None
        return ToolCallRequest(
            call_id=self.call_id or new_id("call"),
            name=self.name.strip(),
            arguments=arguments,
            raw_arguments=raw,
        )


def _partial_suffix(text: str, tag: str) -> int:
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class _ThinkTagSplitter:
    """Split ``<think>...</think>`` spans out of streamed content.

    Tags may arrive split across chunks, so a possible partial tag at the end
    of the buffer is held back until the next chunk.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._inside = False

    @property
    def _kind(self) -> DeltaKind:
        return "reasoning" if self._inside else "text"

    def feed(self, text: str) -> list[tuple[DeltaKind, str]]:
        self._buffer += text
        parts: list[tuple[DeltaKind, str]] = []
        while True:
            tag = _THINK_CLOSE if self._inside else _THINK_OPEN
            idx = self._buffer.find(tag)
            if idx == -1:
                keep = _partial_suffix(self._buffer, tag)
                emit = self._buffer[: len(self._buffer) - keep]
                if emit:
                    parts.append((self._kind, emit))
                self._buffer = self._buffer[len(emit) :]
                return parts
            if idx:
                parts.append((self._kind, self._buffer[:idx]))
            self._buffer = self._buffer[idx + len(tag) :]
            self._inside = not self._inside

    def flush(self) -> list[tuple[DeltaKind, str]]:
        if not self._buffer:
            return []
        parts = [(self._kind, self._buffer)]
        self._buffer = ""
        return parts


class OpenAICompatProvider:
    def __init__(
        self,
        model: str,
        *,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 120,
        extract_think_tags: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model
        self.base_url = self._normalize_base_url(base_url)
        self.api_key = api_key
        self.timeout_seconds = max(10.0, float(timeout_seconds))
        self.extract_think_tags = extract_think_tags
        self._transport = transport

    @staticmethod
    def _coerce_text(value: object) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            chunks: list[str] = []
            for item in value:
                if isinstance(item, str):
                    chunks.append(item)
                elif isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        chunks.append(text)
            return "".join(chunks)
        return ""

    @staticmethod
    def _normalize_base_url(base_url: str) -> str:
        return base_url.rstrip("/")

    @staticmethod
    def _to_tools(tools: list[dict[str, Any]] | None) -> list[dict[str, object]] | None:
        if not tools:
            return None
        normalized: list[dict[str, object]] = []
        for tool in tools:
            name = tool.get("name")
            if not isinstance(name, str) or not name:
                continue
            description = tool.get("description")
            params = tool.get("parameters")
            function: dict[str, object] = {
                "name": name,
                "parameters": (
                    params
                    if isinstance(params, dict)
                    else {"type": "object", "properties": {}}
                ),
            }
            if isinstance(description, str) and description:
                function["description"] = description
            normalized.append({"type": "function", "function": function})
        if not normalized:
            return None
        return normalized

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[ModelDelta]:
        body: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
        }
        normalized_tools = self._to_tools(tools)
        if normalized_tools is not None:
            body["tools"] = normalized_tools
        endpoint = f"{self.base_url}/chat/completions"
        splitter = _ThinkTagSplitter() if self.extract_think_tags else None
        pending: dict[int, _PendingCall] = {}
        finish_reason: str | None = None
        chunk_count = 0
        started = time.perf_counter()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                async with client.stream(
                    "POST", endpoint, headers=self._headers(), json=body
                ) as response:
                    if response.status_code >= 400:
                        detail = (await response.aread()).decode("utf-8", errors="replace")[:500]
                        raise ProviderError(
                            f"chat completion failed ({response.status_code}): {detail}",
                            retryable=response.status_code >= 500 or response.status_code == 429,
                        )
                    async for raw in response.aiter_lines():
                        line = raw.strip()
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:") :].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            continue
                        if not isinstance(chunk, dict):
                            continue
                        if isinstance(chunk.get("error"), dict | str):
                            raise ProviderError(f"chat completion stream error: {chunk['error']}")
                        chunk_count += 1
                        choices = chunk.get("choices")
                        if not isinstance(choices, list):
                            continue
                        for choice in choices:
                            if not isinstance(choice, dict):
                                continue
                            delta = choice.get("delta")
                            if isinstance(delta, dict):
                                for item in self._read_delta(delta, splitter, pending):
                                    yield item
                            reason = choice.get("finish_reason")
                            if isinstance(reason, str) and reason:
                                finish_reason = reason
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"chat completion timed out after {self.timeout_seconds:.0f}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"chat completion transport error: {exc}") from exc

        if splitter is not None:
            for kind, text in splitter.flush():
                yield ModelDelta(kind=kind, text=text)
        for index in sorted(pending):
            call = pending[index]
            if call.name.strip():
                yield ModelDelta.call(call.build())
        logger.debug(
            "Chat completion stream finished model=%s chunks=%d tool_calls=%d duration_ms=%d",
            self.model,
            chunk_count,
            len(pending),
            int((time.perf_counter() - started) * 1000),
        )
        yield ModelDelta.finish(finish_reason)

    def _read_delta(
        self,
        delta: dict[str, Any],
        splitter: _ThinkTagSplitter | None,
        pending: dict[int, _PendingCall],
    ) -> list[ModelDelta]:
        out: list[ModelDelta] = []
        reasoning = self._coerce_text(delta.get("reasoning_content")) or self._coerce_text(
            delta.get("reasoning")
        )
        if reasoning:
            out.append(ModelDelta.reasoning_delta(reasoning))
        content = self._coerce_text(delta.get("content"))
        if content:
            if splitter is None:
                out.append(ModelDelta.text_delta(content))
            else:
                out.extend(
                    ModelDelta(kind=kind, text=text) for kind, text in splitter.feed(content)
                )
        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for position, call in enumerate(tool_calls):
                if not isinstance(call, dict):
                    continue
                index = call.get("index")
                key = index if isinstance(index, int) else position
                slot = pending.setdefault(key, _PendingCall())
                call_id = call.get("id")
                if isinstance(call_id, str) and call_id:
                    slot.call_id = call_id
                fn = call.get("function")
                if not isinstance(fn, dict):
                    continue
                name = fn.get("name")
                if isinstance(name, str) and name:
                    slot.name += name
                arguments = fn.get("arguments")
                if isinstance(arguments, str):
                    slot.argument_parts.append(arguments)
                elif isinstance(arguments, dict):
                    slot.argument_parts.append(json.dumps(arguments))
        return out

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        body: dict[str, object] = {"model": self.model, "messages": messages}
        endpoint = f"{self.base_url}/chat/completions"
        headers = self._headers()
        headers["Accept"] = "application/json"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(endpoint, headers=headers, json=body)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderError(f"chat completion failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("chat completion response is not JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError("chat completion response is not an object")
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ProviderError("chat completion response missing choices")
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise ProviderError("chat completion response message missing")
        text = self._coerce_text(message.get("content"))
        if self.extract_think_tags:
            splitter = _ThinkTagSplitter()
            parts = splitter.feed(text) + splitter.flush()
            text = "".join(chunk for kind, chunk in parts if kind == "text")
        return text.strip()

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/models", headers=self._headers())
            return response.status_code < 400
        except Exception:
            return False
