"""API router aggregation."""

from fastapi import APIRouter

from chatloop.routes.api import chat

router = APIRouter(prefix="/api", tags=["api"])
router.include_router(chat.router)
