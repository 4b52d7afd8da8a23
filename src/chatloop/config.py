"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    app_db: str = Field(alias="APP_DB", default="/tmp/chatloop.db")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    llm_base_url: str = Field(alias="LLM_BASE_URL", default="http://localhost:30000/v1")
    llm_api_key: str = Field(alias="LLM_API_KEY", default="")
    llm_timeout_seconds: int = Field(alias="LLM_TIMEOUT_SECONDS", default=120)
    chat_models: str = Field(
        alias="CHAT_MODELS",
        default=(
            "chat-model-small=gpt-4o-mini,"
            "chat-model-large=gpt-4o,"
            "chat-model-reasoning=deepseek-r1"
        ),
    )
    default_chat_model: str = Field(alias="DEFAULT_CHAT_MODEL", default="chat-model-small")
    reasoning_chat_model: str = Field(
        alias="REASONING_CHAT_MODEL", default="chat-model-reasoning"
    )
    title_model: str = Field(alias="TITLE_MODEL", default="chat-model-small")

    image_base_url: str = Field(alias="IMAGE_BASE_URL", default="")
    image_models: str = Field(
        alias="IMAGE_MODELS", default="small-model=dall-e-2,large-model=dall-e-3"
    )
    image_size: str = Field(alias="IMAGE_SIZE", default="1024x1024")

    blob_backend: str = Field(alias="BLOB_BACKEND", default="inline")
    blob_base_url: str = Field(alias="BLOB_BASE_URL", default="")
    blob_token: str = Field(alias="BLOB_TOKEN", default="")

    weather_base_url: str = Field(
        alias="WEATHER_BASE_URL", default="https://api.open-meteo.com/v1"
    )

    max_steps: int = Field(alias="MAX_STEPS", default=5)
    max_duration_seconds: float = Field(alias="MAX_DURATION_SECONDS", default=60.0)
    branch_timeout_seconds: float = Field(alias="BRANCH_TIMEOUT_SECONDS", default=45.0)
    tool_timeout_seconds: float = Field(alias="TOOL_TIMEOUT_SECONDS", default=50.0)

    stream_smoothing: str = Field(alias="STREAM_SMOOTHING", default="word")
    send_reasoning: int = Field(alias="SEND_REASONING", default=1)
    stream_error_message: str = Field(
        alias="STREAM_ERROR_MESSAGE", default="Oops, an error occured!"
    )

    web_cors_origins: str = Field(alias="WEB_CORS_ORIGINS", default="http://localhost:3000")
    web_auth_token_ttl_hours: int = Field(alias="WEB_AUTH_TOKEN_TTL_HOURS", default=720)
    rate_limit_messages_per_minute: int = Field(
        alias="RATE_LIMIT_MESSAGES_PER_MINUTE", default=30
    )
    detached_shutdown_timeout_seconds: float = Field(
        alias="DETACHED_SHUTDOWN_TIMEOUT_SECONDS", default=10.0
    )


def parse_model_map(raw: str) -> list[tuple[str, str]]:
    """Parse ``label=model,label=model`` into ordered pairs.

    Raises ValueError on entries without a label or model id.
    """
    pairs: list[tuple[str, str]] = []
    for item in raw.split(","):
        entry = item.strip()
        if not entry:
            continue
        label, sep, model_id = entry.partition("=")
        if not sep or not label.strip() or not model_id.strip():
            raise ValueError(f"malformed model mapping entry: {entry!r}")
        pairs.append((label.strip(), model_id.strip()))
    return pairs


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging

    _logger = _logging.getLogger(__name__)

    if settings.stream_smoothing not in {"word", "none"}:
        _logger.warning(
            "Unknown STREAM_SMOOTHING=%s, falling back to unsmoothed output",
            settings.stream_smoothing,
        )

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "APP_DB": settings.app_db,
        "LLM_BASE_URL": settings.llm_base_url,
        "CHAT_MODELS": settings.chat_models,
        "IMAGE_MODELS": settings.image_models,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)

    model_maps = (("CHAT_MODELS", settings.chat_models), ("IMAGE_MODELS", settings.image_models))
    for key, raw in model_maps:
        try:
            parse_model_map(raw)
        except ValueError:
            missing.append(f"{key}(label=model pairs)")

    if settings.blob_backend != "http":
        missing.append("BLOB_BACKEND(http required)")
    if not settings.blob_base_url.strip():
        missing.append("BLOB_BASE_URL")
    if not settings.app_db.startswith("/"):
        missing.append("APP_DB(absolute path required)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
