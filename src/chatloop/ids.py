"""Identifier helpers."""

from uuid import uuid4


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def new_uuid() -> str:
    """Bare UUID string, the shape clients use for chat and message ids."""
    return str(uuid4())
