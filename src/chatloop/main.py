"""FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from chatloop.config import get_settings, validate_settings_for_env
from chatloop.db.migrations.runner import run_migrations
from chatloop.logging import clear_context, configure_logging
from chatloop.routes.api import router as api_router
from chatloop.routes.health import router as health_router
from chatloop.tasks import get_detached_tasks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level)
    applied = run_migrations()
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))
    tasks = get_detached_tasks()
    yield
    await tasks.shutdown(timeout_s=settings.detached_shutdown_timeout_seconds)


limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title="Chatloop", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "rate limit exceeded", "detail": str(exc.detail)},
    )


@app.middleware("http")
async def _request_context(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    clear_context()
    return await call_next(request)


settings = get_settings()
cors_origins = [item.strip() for item in settings.web_cors_origins.split(",") if item.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(health_router)
app.include_router(api_router)
