"""Explicit per-agent tool table: name -> (schema, handler)."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from roomagent.errors import ToolExecutionError, UnknownToolError

ToolHandler = Callable[..., Awaitable[str]]


def string_param(description: str, enum: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string", "description": description}
    if enum:
        schema["enum"] = enum
    return schema


def integer_param(description: str) -> dict[str, Any]:
    return {"type": "integer", "description": description}


@dataclass(frozen=True)
class ToolSpec:
    """A tool as the model sees it plus the coroutine that runs it."""

    name: str
    description: str
    handler: ToolHandler
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def schema(self) -> dict[str, Any]:
        """OpenAI function-calling schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.properties,
                    "required": list(self.required),
                },
            },
        }


class ToolRegistry:
    """Registry of the tools one agent exposes.

    Built when the agent is constructed; names are used as-is.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def add(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        properties: dict[str, dict[str, Any]] | None = None,
        required: tuple[str, ...] = (),
    ) -> ToolSpec:
        spec = ToolSpec(name, description, handler, properties or {}, required)
        self.register(spec)
        return spec

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [spec.schema() for spec in self._tools.values()]

    async def call(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool.

        Raises:
            UnknownToolError: name is not registered
            ToolExecutionError: arguments do not fit the handler's signature
        """
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(name)
        try:
            inspect.signature(spec.handler).bind(**arguments)
        except TypeError as e:
            raise ToolExecutionError(f"Invalid arguments for {name}: {e}") from e
        result = await spec.handler(**arguments)
        return result if isinstance(result, str) else str(result)
