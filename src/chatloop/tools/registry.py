"""Tool registration helpers."""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from chatloop.errors import ToolValidationError

ToolHandler = Callable[[Any], Awaitable[Any]]


@dataclass(slots=True)
class ToolDef:
    name: str
    description: str
    handler: ToolHandler
    parameters: type[BaseModel]

    def schema(self) -> dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.model_json_schema(by_alias=True),
        }


def _summarize_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts) or "invalid arguments"


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def register(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        parameters: type[BaseModel],
    ) -> None:
        if name in self._tools:
            raise ValueError(f"tool already registered: {name}")
        self._tools[name] = ToolDef(
            name=name,
            description=description,
            handler=handler,
            parameters=parameters,
        )

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self, active: Iterable[str] | None = None) -> list[dict[str, object]]:
        allowed = set(self._tools) if active is None else set(active)
        return [tool.schema() for tool in self._tools.values() if tool.name in allowed]

    def validate(self, name: str, arguments: dict[str, Any] | None) -> BaseModel:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolValidationError(f"unknown tool: {name}")
        if arguments is None:
            raise ToolValidationError("arguments are not a JSON object")
        try:
            return tool.parameters.model_validate(arguments)
        except ValidationError as exc:
            raise ToolValidationError(
                f"invalid arguments for {name}: {_summarize_validation_error(exc)}"
            ) from exc
