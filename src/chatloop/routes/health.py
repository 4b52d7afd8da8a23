"""Health and readiness routes."""

import sqlite3

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from chatloop.config import get_settings
from chatloop.db.connection import get_conn
from chatloop.errors import ConfigError
from chatloop.providers.factory import build_language_provider

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
async def readyz() -> JSONResponse:
    settings = get_settings()
    db_ok = True
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1")
    except sqlite3.Error:
        db_ok = False

    try:
        provider_ok = await build_language_provider(settings, None).health_check()
    except ConfigError:
        provider_ok = False

    ok = db_ok and provider_ok
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"ok": ok, "db": db_ok, "provider": provider_ok},
    )
