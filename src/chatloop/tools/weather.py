"""Current weather lookup against the Open-Meteo forecast API."""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, Field

from chatloop.errors import ToolExecutionError


class WeatherArgs(BaseModel):
    latitude: float = Field(ge=-90, le=90, description="Latitude in decimal degrees")
    longitude: float = Field(ge=-180, le=180, description="Longitude in decimal degrees")


async def _http_get_json(
    url: str,
    *,
    params: dict[str, str | float],
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None,
) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
        response = await client.get(url, params=params, headers={"Accept": "application/json"})
        response.raise_for_status()
    try:
        payload = response.json()
    except ValueError as exc:
        raise ToolExecutionError("weather response is not JSON") from exc
    if not isinstance(payload, dict):
        raise ToolExecutionError("weather response is not a JSON object")
    return payload


def make_weather_handler(
    base_url: str,
    *,
    timeout_s: float = 10,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[WeatherArgs], Awaitable[dict[str, Any]]]:
    endpoint = f"{base_url.rstrip('/')}/forecast"

    async def get_weather(args: WeatherArgs) -> dict[str, Any]:
        params: dict[str, str | float] = {
            "latitude": args.latitude,
            "longitude": args.longitude,
            "current": "temperature_2m",
            "hourly": "temperature_2m",
            "daily": "sunrise,sunset",
            "timezone": "auto",
        }
        try:
            return await _http_get_json(
                endpoint, params=params, timeout_s=timeout_s, transport=transport
            )
        except httpx.HTTPStatusError as exc:
            raise ToolExecutionError(
                f"weather request failed ({exc.response.status_code})"
            ) from exc
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"weather request failed: {exc}") from exc

    return get_weather
