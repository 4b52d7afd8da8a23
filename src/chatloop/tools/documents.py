"""Document tools: create, update and suggest edits.

Document bodies are drafted by the request's language provider and stored
through a ``DocumentStore`` on behalf of the requesting user.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from chatloop.db.store import DocumentStore
from chatloop.errors import ToolExecutionError
from chatloop.ids import new_uuid
from chatloop.orchestrator.prompts import (
    SUGGESTIONS_PROMPT,
    document_prompt,
    update_document_prompt,
)
from chatloop.providers.base import LanguageProvider

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5


class CreateDocumentArgs(BaseModel):
    title: str = Field(min_length=1, description="Title of the document")
    kind: Literal["text", "code"] = Field(default="text", description="Kind of document")


class UpdateDocumentArgs(BaseModel):
    id: str = Field(min_length=1, description="The ID of the document to update")
    description: str = Field(description="The description of changes that need to be made")


class RequestSuggestionsArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(
        alias="documentId",
        min_length=1,
        description="The ID of the document to request edits",
    )


def parse_suggestions(raw: str) -> list[dict[str, str]]:
    """Pull the first JSON array out of a model reply.

    Models wrap JSON in prose or code fences often enough that the reply is
    scanned from the first ``[`` instead of parsed whole.
    """
    start = raw.find("[")
    if start < 0:
        raise ToolExecutionError("model reply contained no suggestions")
    try:
        decoded, _ = json.JSONDecoder().raw_decode(raw[start:])
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"model reply was not valid JSON: {exc.msg}") from exc
    if not isinstance(decoded, list):
        raise ToolExecutionError("model reply was not a JSON array")
    suggestions: list[dict[str, str]] = []
    for item in decoded:
        if not isinstance(item, dict):
            continue
        original = item.get("originalSentence")
        suggested = item.get("suggestedSentence")
        if not isinstance(original, str) or not isinstance(suggested, str):
            continue
        description = item.get("description")
        suggestions.append(
            {
                "originalSentence": original,
                "suggestedSentence": suggested,
                "description": description if isinstance(description, str) else "",
            }
        )
    return suggestions[:MAX_SUGGESTIONS]


async def _draft(provider: LanguageProvider, system: str, user: str) -> str:
    return await provider.complete(
        [{"role": "system", "content": system}, {"role": "user", "content": user}]
    )


def make_create_document_handler(
    provider: LanguageProvider, documents: DocumentStore, user_id: str
) -> Callable[[CreateDocumentArgs], Awaitable[dict[str, Any]]]:
    async def create_document(args: CreateDocumentArgs) -> dict[str, Any]:
        document_id = new_uuid()
        content = await _draft(provider, document_prompt(args.kind), args.title)
        await asyncio.to_thread(
            documents.save_document,
            document_id=document_id,
            title=args.title,
            kind=args.kind,
            content=content,
            user_id=user_id,
        )
        logger.info("document.created id=%s kind=%s chars=%d", document_id, args.kind, len(content))
        return {
            "id": document_id,
            "title": args.title,
            "kind": args.kind,
            "content": "A document was created and is now visible to the user.",
        }

    return create_document


def make_update_document_handler(
    provider: LanguageProvider, documents: DocumentStore, user_id: str
) -> Callable[[UpdateDocumentArgs], Awaitable[dict[str, Any]]]:
    async def update_document(args: UpdateDocumentArgs) -> dict[str, Any]:
        document = await asyncio.to_thread(documents.get_document_by_id, args.id)
        if document is None:
            return {"error": "Document not found"}
        content = await _draft(
            provider,
            update_document_prompt(document.content, document.kind),
            args.description,
        )
        await asyncio.to_thread(
            documents.save_document,
            document_id=document.id,
            title=document.title,
            kind=document.kind,
            content=content,
            user_id=user_id,
        )
        logger.info("document.updated id=%s chars=%d", document.id, len(content))
        return {
            "id": document.id,
            "title": document.title,
            "kind": document.kind,
            "content": "The document has been updated successfully.",
        }

    return update_document


def make_request_suggestions_handler(
    provider: LanguageProvider, documents: DocumentStore, user_id: str
) -> Callable[[RequestSuggestionsArgs], Awaitable[dict[str, Any]]]:
    async def request_suggestions(args: RequestSuggestionsArgs) -> dict[str, Any]:
        document = await asyncio.to_thread(documents.get_document_by_id, args.document_id)
        if document is None or not document.content:
            return {"error": "Document not found"}
        reply = await _draft(provider, SUGGESTIONS_PROMPT, document.content)
        suggestions = parse_suggestions(reply)
        await asyncio.to_thread(
            documents.save_suggestions,
            [
                {
                    "id": new_uuid(),
                    "document_id": document.id,
                    "document_created_at": document.created_at,
                    "original_text": item["originalSentence"],
                    "suggested_text": item["suggestedSentence"],
                    "description": item["description"],
                    "user_id": user_id,
                }
                for item in suggestions
            ],
        )
        return {
            "id": document.id,
            "title": document.title,
            "kind": document.kind,
            "message": f"{len(suggestions)} suggestions have been added to the document",
        }

    return request_suggestions
