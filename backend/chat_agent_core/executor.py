from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Iterable

from .models import ToolCallRequest, ToolCallResult
from .registry import ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


class ToolExecutor:
    """Runs registered tool handlers for one owner and always returns a JSON string.

    Unknown tools and handler failures come back as ``{"error": ...}`` payloads
    so the model can explain the gap instead of the request failing.
    """

    def __init__(self, *, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, tool_name: str, owner_id: int) -> str:
        try:
            tool = self.registry.resolve(tool_name)
        except KeyError:
            logger.warning("Model requested unknown tool %r", tool_name)
            return _dumps({"error": f"unknown function: {tool_name}"})

        try:
            output = await self._invoke(tool, owner_id)
            return _dumps(output)
        except Exception as exc:
            logger.exception("Tool %s failed for owner %s", tool.name, owner_id)
            return _dumps({"error": tool.failure_message, "details": str(exc) or type(exc).__name__})

    async def execute_call(self, call: ToolCallRequest, owner_id: int) -> ToolCallResult:
        content = await self.execute(call.tool_name, owner_id)
        return ToolCallResult(call_id=call.call_id, tool_name=call.tool_name, content_json=content)

    async def execute_all(self, calls: Iterable[ToolCallRequest], owner_id: int) -> list[ToolCallResult]:
        # gather keeps argument order, so results line up with the requested calls.
        return list(await asyncio.gather(*(self.execute_call(call, owner_id) for call in calls)))

    @staticmethod
    async def _invoke(tool: ToolDefinition, owner_id: int) -> dict[str, Any]:
        if inspect.iscoroutinefunction(tool.handler):
            output = await tool.handler(owner_id)
        else:
            output = await asyncio.to_thread(tool.handler, owner_id)
            if inspect.isawaitable(output):
                output = await output
        if not isinstance(output, dict):
            raise TypeError(f"Tool {tool.name} returned {type(output).__name__}, expected an object.")
        return output
