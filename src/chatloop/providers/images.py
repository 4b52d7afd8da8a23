"""Image generation adapter for OpenAI-compatible images APIs."""

import base64
import binascii

import httpx

from chatloop.errors import ProviderError
from chatloop.providers.base import GeneratedImage


class OpenAICompatImageProvider:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = max(10.0, float(timeout_seconds))
        self._transport = transport

    async def generate(self, model: str, prompt: str, size: str) -> GeneratedImage:
        body = {
            "model": model,
            "prompt": prompt,
            "size": size,
            "n": 1,
            "response_format": "b64_json",
        }
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/images/generations", headers=headers, json=body
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:300]
            raise ProviderError(
                f"image generation failed for {model} ({exc.response.status_code}): {detail}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"image generation failed for {model}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"image generation response for {model} is not JSON") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise ProviderError(f"image generation response for {model} has no data")
        encoded = data[0].get("b64_json")
        if not isinstance(encoded, str) or not encoded:
            raise ProviderError(f"image generation response for {model} has no b64_json")
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProviderError(f"image generation response for {model} is not base64") from exc
        return GeneratedImage(data=raw, media_type="image/png")
