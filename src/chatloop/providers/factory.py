"""Provider construction helpers."""

from chatloop.config import Settings, parse_model_map
from chatloop.errors import ConfigError
from chatloop.providers.base import ImageProvider, LanguageProvider
from chatloop.providers.images import OpenAICompatImageProvider
from chatloop.providers.openai_compat import OpenAICompatProvider


def resolve_chat_model(settings: Settings, selected: str | None) -> str:
    """Map a client-facing model id (``chat-model-small``) to a backend model id."""
    choice = (selected or "").strip() or settings.default_chat_model
    try:
        mapping = dict(parse_model_map(settings.chat_models))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    model_id = mapping.get(choice)
    if model_id is None:
        raise ConfigError(f"unknown chat model: {choice}")
    return model_id


def is_reasoning_model(settings: Settings, selected: str | None) -> bool:
    choice = (selected or "").strip() or settings.default_chat_model
    return choice == settings.reasoning_chat_model


def build_language_provider(settings: Settings, selected: str | None) -> LanguageProvider:
    return OpenAICompatProvider(
        resolve_chat_model(settings, selected),
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
        extract_think_tags=is_reasoning_model(settings, selected),
    )


def build_image_provider(settings: Settings) -> ImageProvider:
    return OpenAICompatImageProvider(
        base_url=settings.image_base_url.strip() or settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )


def image_backends(settings: Settings) -> list[tuple[str, str]]:
    """Ordered ``(label, model_id)`` pairs, one per fan-out branch."""
    try:
        return parse_model_map(settings.image_models)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
