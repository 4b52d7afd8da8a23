"""Chat request handling: ingest, orchestrate, persist."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from chatloop.auth.dependencies import UserContext
from chatloop.config import Settings
from chatloop.conversation.types import Conversation, Message, ToolInvocation
from chatloop.db.store import SqliteChatStore
from chatloop.errors import BadRequestError, ChatAccessError, PersistenceError
from chatloop.ids import new_uuid
from chatloop.logging import bind_context
from chatloop.orchestrator.events import StreamEvent
from chatloop.orchestrator.finalizer import ResponseFinalizer, redact_tool_payloads
from chatloop.orchestrator.merger import StreamMerger
from chatloop.orchestrator.prompts import TITLE_PROMPT, system_prompt
from chatloop.orchestrator.step import StepLoop, summarize_response
from chatloop.providers.base import ImageProvider, LanguageProvider
from chatloop.providers.factory import (
    build_image_provider,
    build_language_provider,
    is_reasoning_model,
)
from chatloop.storage.blob import BlobStore, build_blob_store
from chatloop.tasks import get_detached_tasks
from chatloop.tasks.detached import DetachedTasks
from chatloop.tools.catalog import ToolContext, active_tool_names, build_tool_registry
from chatloop.tools.runtime import ToolInvoker

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings, str | None], LanguageProvider]

TITLE_MAX_CHARS = 80


class ChatMessageInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=new_uuid)
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_invocations: list[dict[str, Any]] = Field(default_factory=list, alias="toolInvocations")
    reasoning: str | None = None

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            role=self.role,
            content=self.content,
            tool_invocations=[ToolInvocation.from_record(item) for item in self.tool_invocations],
            reasoning=self.reasoning,
        )


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    messages: list[ChatMessageInput] = Field(default_factory=list)
    selected_chat_model: str = Field(default="", alias="selectedChatModel")


def fallback_title(text: str, limit: int = TITLE_MAX_CHARS) -> str:
    collapsed = " ".join(text.split())
    if not collapsed:
        return "New chat"
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 3].rstrip() + "..."


def _clean_title(raw: str) -> str:
    line = next((item.strip() for item in raw.splitlines() if item.strip()), "")
    return line.strip("\"'` ").replace(":", "")[:TITLE_MAX_CHARS].strip()


class ChatService:
    def __init__(
        self,
        settings: Settings,
        store: SqliteChatStore,
        *,
        provider_factory: ProviderFactory = build_language_provider,
        image_provider: ImageProvider | None = None,
        blob_store: BlobStore | None = None,
        tasks: DetachedTasks | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.provider_factory = provider_factory
        self.image_provider = image_provider or build_image_provider(settings)
        self.blob_store = blob_store or build_blob_store(settings)
        self.tasks = tasks or get_detached_tasks()
        self.http_transport = http_transport
        self.finalizer = ResponseFinalizer(store)

    async def handle(self, request: ChatRequest, user: UserContext) -> AsyncIterator[StreamEvent]:
        """Validate and ingest ``request``, then return its event stream.

        Raises ``BadRequestError`` when there is no user message,
        ``ConfigError`` for an unknown model and ``ChatAccessError`` when the
        chat belongs to someone else. Nothing is generated until the
        returned iterator is consumed.
        """
        conversation = Conversation([item.to_message() for item in request.messages])
        user_message = conversation.most_recent_user_message()
        if user_message is None:
            raise BadRequestError("No user message found")

        selected = request.selected_chat_model or self.settings.default_chat_model
        provider = self.provider_factory(self.settings, selected)
        bind_context(chat_id=request.id, user_id=user.user_id)

        owner_checked = await self._ensure_chat(request.id, user.user_id, user_message)
        if owner_checked:
            await self._save_quietly(request.id, [user_message])
        conversation = Conversation(redact_tool_payloads(conversation.messages))

        reasoning = is_reasoning_model(self.settings, selected)
        registry = build_tool_registry(
            ToolContext(
                user_id=user.user_id,
                chat_id=request.id,
                provider=provider,
                image_provider=self.image_provider,
                blob_store=self.blob_store,
                documents=self.store,
                settings=self.settings,
                http_transport=self.http_transport,
            )
        )
        loop = StepLoop(
            provider,
            registry,
            ToolInvoker(registry, timeout_seconds=self.settings.tool_timeout_seconds),
            max_steps=self.settings.max_steps,
            active_tools=active_tool_names(self.settings, selected),
            system_prompt=system_prompt(reasoning=reasoning),
        )
        merger = StreamMerger(
            smoothing=self.settings.stream_smoothing,
            send_reasoning=bool(self.settings.send_reasoning),
            max_duration_seconds=self.settings.max_duration_seconds,
            error_message=self.settings.stream_error_message,
        )
        logger.info(
            "chat.start chat_id=%s model=%s history=%d reasoning=%s",
            request.id,
            selected,
            len(conversation),
            reasoning,
        )
        return self._stream(request.id, conversation, loop, merger, persist=owner_checked)

    async def _stream(
        self,
        chat_id: str,
        conversation: Conversation,
        loop: StepLoop,
        merger: StreamMerger,
        *,
        persist: bool = True,
    ) -> AsyncIterator[StreamEvent]:
        async for event in merger.merge(loop.run(conversation)):
            yield event
        if not merger.completed:
            logger.info("chat.unfinished chat_id=%s; response not persisted", chat_id)
            return
        if not persist:
            logger.warning("chat.unverified chat_id=%s; response not persisted", chat_id)
            return
        logger.info(
            "chat.finished chat_id=%s %s", chat_id, summarize_response(loop.response_messages)
        )
        self.tasks.spawn(
            f"persist-response:{chat_id}",
            self.finalizer.persist(chat_id, loop.response_messages, loop.reasoning),
        )

    async def _ensure_chat(self, chat_id: str, user_id: str, user_message: Message) -> bool:
        """Create the chat if it is new and return whether its owner was verified.

        A chat that could not be looked up is never written to.
        """
        try:
            chat = await asyncio.to_thread(self.store.get_chat_by_id, chat_id)
        except PersistenceError:
            logger.exception("chat.lookup_failed chat_id=%s", chat_id)
            return False
        if chat is not None:
            if chat.user_id != user_id:
                raise ChatAccessError(f"chat {chat_id} belongs to another user")
            return True
        title = await self.generate_title(user_message)
        try:
            await asyncio.to_thread(self.store.save_chat, chat_id, user_id, title)
        except PersistenceError:
            logger.exception("chat.save_failed chat_id=%s", chat_id)
        return True

    async def _save_quietly(self, chat_id: str, messages: list[Message]) -> None:
        try:
            await asyncio.to_thread(self.store.save_messages, chat_id, messages)
        except PersistenceError:
            logger.exception("chat.message_save_failed chat_id=%s", chat_id)

    async def generate_title(self, message: Message) -> str:
        try:
            provider = self.provider_factory(self.settings, self.settings.title_model)
            raw = await provider.complete(
                [
                    {"role": "system", "content": TITLE_PROMPT},
                    {"role": "user", "content": message.content},
                ]
            )
        except Exception as exc:
            logger.warning("chat.title_failed error=%s: %s", type(exc).__name__, exc)
            return fallback_title(message.content)
        return _clean_title(raw) or fallback_title(message.content)
