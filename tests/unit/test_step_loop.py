import json

import httpx
import pytest
from fakes import FailingMidStreamProvider, ScriptedProvider, text_turn, tool_turn

from chatloop.conversation.types import Conversation, Message
from chatloop.errors import ProviderError, ToolExecutionError
from chatloop.orchestrator.events import (
    ReasoningDelta,
    StreamEnd,
    StreamError,
    TextDelta,
    ToolCallError,
    ToolCallResult,
    ToolCallStart,
    is_terminal,
)
from chatloop.orchestrator.step import StepLoop
from chatloop.providers.base import ModelDelta
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.runtime import ToolInvoker
from chatloop.tools.weather import WeatherArgs, make_weather_handler

FORECAST = {"current": {"temperature_2m": 4.2}, "timezone": "America/New_York"}


def _weather_registry() -> ToolRegistry:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=FORECAST)

    registry = ToolRegistry()
    registry.register(
        "getWeather",
        "Get the current weather at a location",
        make_weather_handler("http://weather.test/v1", transport=httpx.MockTransport(handler)),
        WeatherArgs,
    )
    return registry


def _loop(provider, registry=None, *, active=("getWeather",), max_steps=5) -> StepLoop:
    registry = registry or _weather_registry()
    return StepLoop(
        provider,
        registry,
        ToolInvoker(registry),
        max_steps=max_steps,
        active_tools=active,
        system_prompt="be brief",
    )


def _conversation(text: str = "What's the weather in Boston?") -> Conversation:
    return Conversation([Message(role="user", content=text)])


async def _collect(loop: StepLoop, conversation: Conversation) -> list[object]:
    return [event async for event in loop.run(conversation)]


@pytest.mark.asyncio
async def test_weather_question_runs_tool_then_answers() -> None:
    provider = ScriptedProvider(
        [
            tool_turn("getWeather", {"latitude": 42.36, "longitude": -71.06}),
            text_turn("It is ", "4.2°C ", "in Boston."),
        ]
    )
    loop = _loop(provider)
    conversation = _conversation()

    events = await _collect(loop, conversation)

    kinds = [type(event) for event in events]
    assert kinds == [ToolCallStart, ToolCallResult, TextDelta, TextDelta, TextDelta, StreamEnd]
    assert events[0].tool_name == "getWeather"
    assert events[1].result == FORECAST
    assert "".join(e.text for e in events if isinstance(e, TextDelta)) == "It is 4.2°C in Boston."
    assert events[0].step == 0 and events[2].step == 1

    second_call = provider.calls[1]["messages"]
    assert second_call[0] == {"role": "system", "content": "be brief"}
    tool_message = second_call[-1]
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call_1"
    assert json.loads(tool_message["content"]) == FORECAST

    assert len(conversation) == 3
    assert [m.role for m in loop.response_messages] == ["assistant", "assistant"]
    [invocation] = loop.response_messages[0].tool_invocations
    assert invocation.state == "result"


@pytest.mark.asyncio
async def test_reasoning_mode_never_starts_a_tool() -> None:
    provider = ScriptedProvider(
        [
            [
                ModelDelta.reasoning_delta("thinking about it"),
                *tool_turn("getWeather", {"latitude": 1, "longitude": 2}),
            ],
            text_turn("I cannot look that up."),
        ]
    )
    loop = _loop(provider, active=())

    events = await _collect(loop, _conversation())

    assert not any(isinstance(event, ToolCallStart) for event in events)
    assert isinstance(events[0], ReasoningDelta)
    errors = [event for event in events if isinstance(event, ToolCallError)]
    assert len(errors) == 1
    assert errors[0].error == "tool not available: getWeather"
    assert provider.calls[0]["tools"] is None
    assert isinstance(events[-1], StreamEnd)
    assert loop.reasoning == "thinking about it"


@pytest.mark.asyncio
async def test_generation_failure_emits_single_terminal_error() -> None:
    loop = _loop(FailingMidStreamProvider([]))

    events = await _collect(loop, _conversation())

    assert [type(event) for event in events] == [TextDelta, StreamError]
    assert events[-1].detail == "backend connection reset"
    assert sum(1 for event in events if is_terminal(event)) == 1


@pytest.mark.asyncio
async def test_failure_at_step_start_after_tool_round() -> None:
    provider = ScriptedProvider(
        [
            tool_turn("getWeather", {"latitude": 1, "longitude": 2}),
            ProviderError("rate limited"),
        ]
    )

    events = await _collect(_loop(provider), _conversation())

    assert [type(event) for event in events] == [ToolCallStart, ToolCallResult, StreamError]
    assert events[-1].step == 1


@pytest.mark.asyncio
async def test_max_steps_runs_final_tool_call_then_ends() -> None:
    provider = ScriptedProvider(
        [
            tool_turn("getWeather", {"latitude": 1, "longitude": 2}, call_id="c1"),
            tool_turn("getWeather", {"latitude": 3, "longitude": 4}, call_id="c2"),
            text_turn("never reached"),
        ]
    )
    loop = _loop(provider, max_steps=2)

    events = await _collect(loop, _conversation())

    assert len(provider.calls) == 2
    assert [type(event) for event in events] == [
        ToolCallStart,
        ToolCallResult,
        ToolCallStart,
        ToolCallResult,
        StreamEnd,
    ]
    assert events[-1].finish_reason == "max-steps"
    assert all(
        item.settled for message in loop.response_messages for item in message.tool_invocations
    )


@pytest.mark.asyncio
async def test_invalid_arguments_become_tool_error_and_loop_continues() -> None:
    provider = ScriptedProvider(
        [
            tool_turn("getWeather", {"latitude": "north", "longitude": 500}),
            text_turn("Sorry, which city?"),
        ]
    )

    events = await _collect(_loop(provider), _conversation())

    assert [type(event) for event in events] == [ToolCallError, TextDelta, StreamEnd]
    assert "invalid arguments for getWeather" in events[0].error
    tool_message = provider.calls[1]["messages"][-1]
    assert tool_message["role"] == "tool"
    assert "error" in json.loads(tool_message["content"])


@pytest.mark.asyncio
async def test_undecodable_arguments_are_a_validation_error() -> None:
    provider = ScriptedProvider([tool_turn("getWeather", None), text_turn("ok")])

    events = await _collect(_loop(provider), _conversation())

    assert isinstance(events[0], ToolCallError)
    assert events[0].error == "arguments are not a JSON object"


@pytest.mark.asyncio
async def test_tool_execution_failure_is_contained() -> None:
    async def broken(_args: WeatherArgs) -> None:
        raise ToolExecutionError("weather request failed (503)")

    registry = ToolRegistry()
    registry.register("getWeather", "Weather", broken, WeatherArgs)
    provider = ScriptedProvider(
        [tool_turn("getWeather", {"latitude": 1, "longitude": 2}), text_turn("Try later.")]
    )

    events = await _collect(_loop(provider, registry), _conversation())

    assert [type(event) for event in events] == [
        ToolCallStart,
        ToolCallError,
        TextDelta,
        StreamEnd,
    ]
    assert events[1].error == "weather request failed (503)"


@pytest.mark.asyncio
async def test_plain_answer_ends_after_one_step() -> None:
    provider = ScriptedProvider([text_turn("Hello", " there")])

    events = await _collect(_loop(provider), _conversation("hi"))

    assert [type(event) for event in events] == [TextDelta, TextDelta, StreamEnd]
    assert events[-1].finish_reason == "stop"
    assert len(provider.calls) == 1
    assert provider.calls[0]["tools"][0]["name"] == "getWeather"
