import json

import pytest

from chatloop.conversation.types import (
    Conversation,
    Message,
    ToolInvocation,
    to_provider_messages,
)


def _weather_call() -> ToolInvocation:
    return ToolInvocation(
        tool_call_id="call_1", tool_name="getWeather", args={"latitude": 1.0, "longitude": 2.0}
    )


def test_invocation_settles_once() -> None:
    invocation = _weather_call()
    invocation.resolve({"temp": 20})

    assert invocation.settled
    with pytest.raises(RuntimeError):
        invocation.fail("late failure")
    assert invocation.state == "result"


def test_invocation_record_shapes() -> None:
    failed = _weather_call()
    failed.fail("upstream down")

    record = failed.to_record()

    assert record == {
        "toolCallId": "call_1",
        "toolName": "getWeather",
        "args": {"latitude": 1.0, "longitude": 2.0},
        "state": "error",
        "error": "upstream down",
    }
    assert ToolInvocation.from_record(record).error == "upstream down"


def test_client_partial_state_is_treated_as_pending() -> None:
    invocation = ToolInvocation.from_record(
        {"toolCallId": "c", "toolName": "getWeather", "state": "partial-call", "args": "junk"}
    )

    assert invocation.state == "call"
    assert invocation.args == {}


def test_message_from_plain_text_content() -> None:
    message = Message.from_record(message_id="m1", role="user", content="hello")

    assert message.content == "hello"
    assert message.tool_invocations == []


def test_message_from_record_rejects_unknown_role() -> None:
    with pytest.raises(ValueError):
        Message.from_record(message_id="m1", role="system", content="{}")


def test_most_recent_user_message() -> None:
    conversation = Conversation(
        [
            Message(role="user", content="first"),
            Message(role="assistant", content="reply"),
            Message(role="user", content="second"),
            Message(role="assistant", content="again"),
        ]
    )

    latest = conversation.most_recent_user_message()

    assert latest is not None
    assert latest.content == "second"
    assert Conversation([Message(role="assistant")]).most_recent_user_message() is None


def test_conversation_messages_is_a_copy() -> None:
    conversation = Conversation([Message(role="user", content="hi")])
    conversation.messages.append(Message(role="assistant"))

    assert len(conversation) == 1


def test_provider_messages_pair_calls_with_results() -> None:
    settled = _weather_call()
    settled.resolve({"temp": 20})
    pending = ToolInvocation(tool_call_id="call_2", tool_name="getWeather", args={})
    assistant = Message(role="assistant", content="", tool_invocations=[settled, pending])

    rendered = to_provider_messages(
        "be brief", [Message(role="user", content="weather?"), assistant]
    )

    assert [item["role"] for item in rendered] == ["system", "user", "assistant", "tool"]
    assert [call["id"] for call in rendered[2]["tool_calls"]] == ["call_1"]
    assert rendered[3]["tool_call_id"] == "call_1"
    assert json.loads(rendered[3]["content"]) == {"temp": 20}


def test_provider_messages_render_errors_and_skip_empty_assistant() -> None:
    failed = _weather_call()
    failed.fail("boom")

    rendered = to_provider_messages(
        "",
        [
            Message(role="assistant", content=""),
            Message(role="assistant", content="", tool_invocations=[failed]),
        ],
    )

    assert [item["role"] for item in rendered] == ["assistant", "tool"]
    assert json.loads(rendered[1]["content"]) == {"error": "boom"}
