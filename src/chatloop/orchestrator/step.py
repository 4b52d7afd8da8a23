"""Multi-step generation loop with inline tool dispatch."""

import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

from chatloop.conversation.types import Conversation, Message, ToolInvocation, to_provider_messages
from chatloop.errors import ProviderError, ToolValidationError
from chatloop.ids import new_id
from chatloop.orchestrator.events import (
    ReasoningDelta,
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallError,
    ToolCallResult,
    ToolCallStart,
)
from chatloop.providers.base import LanguageProvider, ToolCallRequest
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.runtime import ToolInvoker

logger = logging.getLogger(__name__)

GENERATION_FAILED = "generation failed"


class StepLoop:
    """Drive the model for up to ``max_steps`` steps.

    Each step streams one model turn. Text and reasoning are emitted as they
    arrive; tool calls requested in the turn are validated and executed in
    the order the model produced them, and their settled records become
    context for the next step. A turn without tool calls ends the loop.

    The loop appends to the conversation it is given and records the new
    assistant messages in ``response_messages``; it never persists anything.
    """

    def __init__(
        self,
        provider: LanguageProvider,
        registry: ToolRegistry,
        invoker: ToolInvoker,
        *,
        max_steps: int,
        active_tools: Iterable[str],
        system_prompt: str = "",
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.invoker = invoker
        self.max_steps = max(1, max_steps)
        self.active_tools = frozenset(active_tools)
        self.system_prompt = system_prompt
        self.response_messages: list[Message] = []
        self._reasoning: list[str] = []

    @property
    def reasoning(self) -> str | None:
        return "".join(self._reasoning) or None

    async def run(self, conversation: Conversation) -> AsyncIterator[StreamEvent]:
        tools = self.registry.schemas(self.active_tools) if self.active_tools else None
        for step in range(self.max_steps):
            text_parts: list[str] = []
            calls: list[ToolCallRequest] = []
            finish_reason: str | None = None
            logger.info(
                "step.start step=%d model=%s tools=%d",
                step,
                self.provider.model,
                len(tools or []),
            )
            try:
                async for delta in self.provider.stream(
                    to_provider_messages(self.system_prompt, conversation.messages), tools
                ):
                    if delta.kind == "text" and delta.text:
                        text_parts.append(delta.text)
                        yield TextDelta(step=step, text=delta.text)
                    elif delta.kind == "reasoning" and delta.text:
                        self._reasoning.append(delta.text)
                        yield ReasoningDelta(step=step, text=delta.text)
                    elif delta.kind == "tool_call" and delta.tool_call is not None:
                        calls.append(delta.tool_call)
                    elif delta.kind == "finish":
                        finish_reason = delta.finish_reason
            except ProviderError as exc:
                logger.warning("step.provider_error step=%d error=%s", step, exc)
                yield StreamError(step=step, message=GENERATION_FAILED, detail=str(exc))
                return
            except Exception as exc:
                logger.exception("step.unexpected_error step=%d", step)
                yield StreamError(
                    step=step,
                    message=GENERATION_FAILED,
                    detail=f"{type(exc).__name__}: {exc}",
                )
                return

            assistant = Message(role="assistant", content="".join(text_parts))
            conversation.append(assistant)
            self.response_messages.append(assistant)
            if not calls:
                yield StreamEnd(step=step, finish_reason=finish_reason or "stop")
                return

            for call in calls:
                async for event in self._dispatch(step, assistant, call):
                    yield event
            logger.info("step.end step=%d tool_calls=%d", step, len(calls))

        # ceiling reached: the last step's tool calls ran, nothing more is generated
        yield StreamEnd(step=self.max_steps - 1, finish_reason="max-steps")

    async def _dispatch(
        self, step: int, assistant: Message, call: ToolCallRequest
    ) -> AsyncIterator[StreamEvent]:
        invocation = ToolInvocation(
            tool_call_id=call.call_id or new_id("call"),
            tool_name=call.name,
            args=dict(call.arguments or {}),
        )
        assistant.tool_invocations.append(invocation)

        if call.name not in self.active_tools:
            invocation.fail(f"tool not available: {call.name}")
            logger.warning("step.tool_unavailable step=%d name=%s", step, call.name)
            yield self._error_event(step, invocation)
            return
        try:
            params = self.registry.validate(call.name, call.arguments)
        except ToolValidationError as exc:
            invocation.fail(str(exc))
            logger.info("step.tool_invalid step=%d name=%s error=%s", step, call.name, exc)
            yield self._error_event(step, invocation)
            return

        yield ToolCallStart(
            step=step,
            tool_call_id=invocation.tool_call_id,
            tool_name=invocation.tool_name,
            args=invocation.args,
        )
        outcome = await self.invoker.invoke(call.name, params)
        if outcome.ok:
            invocation.resolve(outcome.result)
            yield ToolCallResult(
                step=step,
                tool_call_id=invocation.tool_call_id,
                tool_name=invocation.tool_name,
                result=outcome.result,
            )
        else:
            invocation.fail(outcome.error or f"{call.name} failed")
            yield self._error_event(step, invocation)

    @staticmethod
    def _error_event(step: int, invocation: ToolInvocation) -> ToolCallError:
        return ToolCallError(
            step=step,
            tool_call_id=invocation.tool_call_id,
            tool_name=invocation.tool_name,
            error=invocation.error or "",
        )


def summarize_response(messages: list[Message]) -> dict[str, Any]:
    return {
        "messages": len(messages),
        "tool_calls": sum(len(m.tool_invocations) for m in messages),
        "chars": sum(len(m.content) for m in messages),
    }
