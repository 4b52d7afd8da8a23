"""Chat streaming and deletion routes."""

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from chatloop.auth.dependencies import UserContext, optional_auth
from chatloop.config import get_settings
from chatloop.db.store import SqliteChatStore
from chatloop.errors import BadRequestError, ChatAccessError, ConfigError, PersistenceError
from chatloop.orchestrator.events import StreamEvent, encode_ndjson
from chatloop.services.chat import ChatRequest, ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["api-chat"])
_limiter = Limiter(key_func=get_remote_address)


def _chat_rate_limit() -> str:
    return f"{max(1, get_settings().rate_limit_messages_per_minute)}/minute"


def get_chat_store() -> SqliteChatStore:
    return SqliteChatStore()


def get_chat_service(store: SqliteChatStore = Depends(get_chat_store)) -> ChatService:  # noqa: B008
    return ChatService(get_settings(), store)


async def _ndjson(events: AsyncIterator[StreamEvent]) -> AsyncIterator[bytes]:
    async for event in events:
        yield encode_ndjson(event)


@router.post("")
@_limiter.limit(_chat_rate_limit)
async def post_chat(
    request: Request,
    body: ChatRequest,
    user: UserContext | None = Depends(optional_auth),  # noqa: B008
    service: ChatService = Depends(get_chat_service),  # noqa: B008
) -> Response:
    del request
    if user is None:
        return PlainTextResponse("Unauthorized", status_code=401)
    try:
        events = await service.handle(body, user)
    except BadRequestError as exc:
        return PlainTextResponse(str(exc), status_code=400)
    except ConfigError as exc:
        return PlainTextResponse(str(exc), status_code=400)
    except ChatAccessError:
        return PlainTextResponse("Unauthorized", status_code=401)
    return StreamingResponse(_ndjson(events), media_type="application/x-ndjson")


@router.delete("")
async def delete_chat(
    chat_id: str | None = Query(default=None, alias="id"),
    user: UserContext | None = Depends(optional_auth),  # noqa: B008
    store: SqliteChatStore = Depends(get_chat_store),  # noqa: B008
) -> PlainTextResponse:
    if not chat_id:
        return PlainTextResponse("Not Found", status_code=404)
    if user is None:
        return PlainTextResponse("Unauthorized", status_code=401)
    try:
        chat = await asyncio.to_thread(store.get_chat_by_id, chat_id)
        if chat is None:
            return PlainTextResponse("Not Found", status_code=404)
        if chat.user_id != user.user_id:
            return PlainTextResponse("Unauthorized", status_code=401)
        await asyncio.to_thread(store.delete_chat_by_id, chat_id)
    except PersistenceError:
        logger.exception("chat.delete_failed chat_id=%s", chat_id)
        return PlainTextResponse(
            "An error occurred while processing your request", status_code=500
        )
    logger.info("chat.deleted chat_id=%s", chat_id)
    return PlainTextResponse("Chat deleted", status_code=200)
