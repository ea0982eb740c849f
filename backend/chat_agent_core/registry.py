from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

ToolHandler = Callable[[int], Union[dict[str, Any], Awaitable[dict[str, Any]]]]


def _empty_parameters() -> dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    handler: ToolHandler
    description: str
    parameters: dict[str, Any] = field(default_factory=_empty_parameters)
    failure_message: str = "The lookup failed."


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def resolve(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if not tool:
            raise KeyError(f"Tool not found: {name}")
        return tool

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def list_schemas(self) -> list[dict[str, Any]]:
        """Tool schemas in the chat-completions ``tools`` format, in registration order."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self._tools.values()
        ]
