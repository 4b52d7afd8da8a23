import pytest

from chatloop.conversation.types import Message, ToolInvocation
from chatloop.db.store import SqliteChatStore
from chatloop.errors import PersistenceError
from chatloop.orchestrator.finalizer import (
    REDACTED,
    ResponseFinalizer,
    redact_tool_payloads,
    sanitize_response_messages,
)

DATA_URL = "data:image/png;base64," + "A" * 4096


def _image_message() -> Message:
    invocation = ToolInvocation(tool_call_id="c1", tool_name="generateImage", args={"prompt": "cat"})
    invocation.resolve(
        [
            {"model": "small-model", "status": "ok", "url": DATA_URL, "time": "1.0s"},
            {"model": "large-model", "status": "failed", "error": "boom", "time": "0.3s"},
            {"model": "legacy", "status": "ok", "image": "iVBORw0KGgo="},
        ]
    )
    return Message(role="assistant", content="", tool_invocations=[invocation])


def test_redaction_replaces_embedded_payloads() -> None:
    [message] = redact_tool_payloads([_image_message()])

    small, large, legacy = message.tool_invocations[0].result
    assert small["url"] == REDACTED
    assert small["time"] == "1.0s"
    assert large == {"model": "large-model", "status": "failed", "error": "boom", "time": "0.3s"}
    assert legacy["image"] == REDACTED


def test_redaction_keeps_remote_urls() -> None:
    invocation = ToolInvocation(tool_call_id="c1", tool_name="generateImage", args={})
    invocation.resolve([{"url": "https://blob.test/images/a.png"}])
    message = Message(role="assistant", tool_invocations=[invocation])

    [copy] = redact_tool_payloads([message])

    assert copy.tool_invocations[0].result == [{"url": "https://blob.test/images/a.png"}]


def test_redaction_leaves_settled_history_untouched() -> None:
    original = _image_message()
    settled = original.tool_invocations[0]

    [copy] = redact_tool_payloads([original])

    assert settled.result[0]["url"] == DATA_URL
    assert settled.result[2]["image"] == "iVBORw0KGgo="
    assert copy.tool_invocations[0] is not settled
    assert copy.tool_invocations[0].result[0]["url"] == REDACTED
    assert copy.id == original.id


def test_sanitize_drops_unsettled_and_empty_messages() -> None:
    pending = ToolInvocation(tool_call_id="c9", tool_name="getWeather", args={})
    messages = [
        Message(role="assistant", content="", tool_invocations=[pending]),
        _image_message(),
        Message(role="assistant", content="Here you go."),
    ]

    sanitized = sanitize_response_messages(messages, reasoning="because")

    assert len(sanitized) == 2
    assert sanitized[0].tool_invocations[0].tool_call_id == "c1"
    assert sanitized[1].content == "Here you go."
    assert sanitized[1].reasoning == "because"
    assert messages[0].tool_invocations == [pending]
    assert messages[1].tool_invocations[0].result[0]["url"] == DATA_URL


def test_sanitize_is_idempotent() -> None:
    once = sanitize_response_messages(
        [_image_message(), Message(role="assistant", content="Done")], reasoning="r"
    )
    twice = sanitize_response_messages(once, reasoning="r")

    assert [m.to_record() for m in twice] == [m.to_record() for m in once]
    assert [m.id for m in twice] == [m.id for m in once]


@pytest.mark.asyncio
async def test_persist_writes_sanitized_messages() -> None:
    store = SqliteChatStore()
    store.save_chat("chat-1", "usr_1", "Images")
    finalizer = ResponseFinalizer(store)

    saved = await finalizer.persist("chat-1", [_image_message()], reasoning=None)

    [loaded] = store.get_messages_by_chat_id("chat-1")
    assert len(saved) == 1
    assert loaded.tool_invocations[0].result[0]["url"] == REDACTED


@pytest.mark.asyncio
async def test_persist_failure_is_logged_and_swallowed(caplog: pytest.LogCaptureFixture) -> None:
    class BrokenStore:
        def save_messages(self, chat_id: str, messages: list[Message]) -> None:
            raise PersistenceError("disk full")

    finalizer = ResponseFinalizer(BrokenStore())  # type: ignore[arg-type]

    saved = await finalizer.persist("chat-1", [Message(role="assistant", content="hi")])

    assert saved == []
    assert "finalizer.persist_failed" in caplog.text
