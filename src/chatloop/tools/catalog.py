"""Built-in tool catalog for one chat request."""

from dataclasses import dataclass

import httpx

from chatloop.config import Settings
from chatloop.db.store import DocumentStore
from chatloop.providers.base import ImageProvider, LanguageProvider
from chatloop.providers.factory import image_backends, is_reasoning_model
from chatloop.storage.blob import BlobStore
from chatloop.tools.branches import ConcurrentBranchRunner
from chatloop.tools.documents import (
    CreateDocumentArgs,
    RequestSuggestionsArgs,
    UpdateDocumentArgs,
    make_create_document_handler,
    make_request_suggestions_handler,
    make_update_document_handler,
)
from chatloop.tools.images import GenerateImageArgs, make_generate_image_handler
from chatloop.tools.registry import ToolRegistry
from chatloop.tools.weather import WeatherArgs, make_weather_handler

TOOL_NAMES: tuple[str, ...] = (
    "getWeather",
    "createDocument",
    "updateDocument",
    "requestSuggestions",
    "generateImage",
)


@dataclass(slots=True)
class ToolContext:
    user_id: str
    chat_id: str
    provider: LanguageProvider
    image_provider: ImageProvider
    blob_store: BlobStore
    documents: DocumentStore
    settings: Settings
    http_transport: httpx.AsyncBaseTransport | None = None


def build_tool_registry(context: ToolContext) -> ToolRegistry:
    settings = context.settings
    registry = ToolRegistry()
    registry.register(
        "getWeather",
        "Get the current weather at a location",
        make_weather_handler(settings.weather_base_url, transport=context.http_transport),
        WeatherArgs,
    )
    registry.register(
        "createDocument",
        "Create a document for writing or content creation activities",
        make_create_document_handler(context.provider, context.documents, context.user_id),
        CreateDocumentArgs,
    )
    registry.register(
        "updateDocument",
        "Update a document with the given description",
        make_update_document_handler(context.provider, context.documents, context.user_id),
        UpdateDocumentArgs,
    )
    registry.register(
        "requestSuggestions",
        "Request suggestions for a document",
        make_request_suggestions_handler(context.provider, context.documents, context.user_id),
        RequestSuggestionsArgs,
    )
    registry.register(
        "generateImage",
        "Generate an image with every configured image model",
        make_generate_image_handler(
            images=context.image_provider,
            blobs=context.blob_store,
            backends=image_backends(settings),
            size=settings.image_size,
            runner=ConcurrentBranchRunner(timeout_seconds=settings.branch_timeout_seconds),
        ),
        GenerateImageArgs,
    )
    return registry


def active_tool_names(settings: Settings, selected_model: str | None) -> list[str]:
    """Tools the model may call this request; none for the reasoning model."""
    if is_reasoning_model(settings, selected_model):
        return []
    return list(TOOL_NAMES)
