"""Binary object storage: ``put(bytes) -> URL``."""

import base64
from typing import Protocol

import httpx

from chatloop.config import Settings
from chatloop.errors import StorageError


class BlobStore(Protocol):
    async def put(self, pathname: str, data: bytes, content_type: str) -> str: ...


class HttpBlobStore:
    """Upload with ``PUT {base}/{pathname}``; the service answers ``{"url": ...}``."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout_seconds: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def put(self, pathname: str, data: bytes, content_type: str) -> str:
        headers = {"Content-Type": content_type, "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}/{pathname.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.put(url, content=data, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"blob upload failed ({exc.response.status_code}): {pathname}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"blob upload failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise StorageError("blob upload response is not JSON") from exc
        stored = payload.get("url") if isinstance(payload, dict) else None
        if not isinstance(stored, str) or not stored:
            raise StorageError("blob upload response missing url")
        return stored


class InlineBlobStore:
    """Development store that embeds the object in a ``data:`` URL."""

    async def put(self, pathname: str, data: bytes, content_type: str) -> str:
        del pathname
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{content_type};base64,{encoded}"


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "http" and settings.blob_base_url.strip():
        return HttpBlobStore(settings.blob_base_url, settings.blob_token)
    return InlineBlobStore()
