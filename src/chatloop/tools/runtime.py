"""Tool invocation with failure containment."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from chatloop.errors import ToolError
from chatloop.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def _shorten_text(text: str, width: int = 60, placeholder: str = "...") -> str:
    if len(text) <= width:
        return text
    available = width - len(placeholder)
    if available <= 0:
        return placeholder
    return text[:available] + placeholder


@dataclass(slots=True)
class ToolOutcome:
    ok: bool
    result: Any = None
    error: str | None = None
    elapsed_seconds: float = 0.0


class ToolInvoker:
    """Runs one named tool and converts every failure into a ``ToolOutcome``."""

    def __init__(self, registry: ToolRegistry, *, timeout_seconds: float | None = None) -> None:
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    async def invoke(self, tool_name: str, arguments: dict[str, Any] | BaseModel) -> ToolOutcome:
        tool = self.registry.get(tool_name)
        if tool is None:
            return ToolOutcome(ok=False, error=f"unknown tool: {tool_name}")
        if isinstance(arguments, BaseModel):
            params = arguments
        else:
            try:
                params = self.registry.validate(tool_name, arguments)
            except ToolError as exc:
                return ToolOutcome(ok=False, error=str(exc))

        self._log_call(tool_name, params)
        start = time.perf_counter()
        outcome: ToolOutcome
        try:
            async with asyncio.timeout(self.timeout_seconds):
                result = await tool.handler(params)
            outcome = ToolOutcome(ok=True, result=result)
        except TimeoutError:
            logger.warning("tool.call.timeout name=%s timeout=%s", tool_name, self.timeout_seconds)
            limit = f" after {self.timeout_seconds:.0f}s" if self.timeout_seconds else ""
            outcome = ToolOutcome(ok=False, error=f"{tool_name} timed out{limit}")
        except ToolError as exc:
            logger.warning("tool.call.error name=%s error=%s", tool_name, exc)
            outcome = ToolOutcome(ok=False, error=str(exc))
        except Exception as exc:
            logger.exception("tool.call.error name=%s", tool_name)
            outcome = ToolOutcome(ok=False, error=f"{type(exc).__name__}: {exc}")
        outcome.elapsed_seconds = time.perf_counter() - start
        logger.info(
            "tool.call.end name=%s ok=%s duration=%.3fms",
            tool_name,
            outcome.ok,
            outcome.elapsed_seconds * 1000,
        )
        return outcome

    @staticmethod
    def _log_call(tool_name: str, params: BaseModel) -> None:
        rendered: list[str] = []
        for key, value in params.model_dump().items():
            try:
                text = json.dumps(value, ensure_ascii=False)
            except TypeError:
                text = repr(value)
            rendered.append(f"{key}={_shorten_text(text)}")
        logger.info("tool.call.start name=%s { %s }", tool_name, ", ".join(rendered))
