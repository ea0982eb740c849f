from __future__ import annotations

import asyncio
import json

import pytest

from chat_agent_core import ToolCallRequest, ToolDefinition, ToolExecutor, ToolRegistry


def _registry(**handlers) -> ToolRegistry:
    registry = ToolRegistry()
    for name, handler in handlers.items():
        registry.register(ToolDefinition(name, handler, description=f"{name} lookup", failure_message=f"{name} failed."))
    return registry


def test_registry_lists_schemas_in_registration_order():
    registry = _registry(get_b=lambda owner_id: {}, get_a=lambda owner_id: {})

    schemas = registry.list_schemas()

    assert [schema["function"]["name"] for schema in schemas] == ["get_b", "get_a"]
    assert schemas[0] == {
        "type": "function",
        "function": {
            "name": "get_b",
            "description": "get_b lookup",
            "parameters": {"type": "object", "properties": {}, "required": []},
        },
    }


def test_registry_rejects_duplicate_names_and_unknown_lookups():
    registry = _registry(get_a=lambda owner_id: {})

    with pytest.raises(ValueError):
        registry.register(ToolDefinition("get_a", lambda owner_id: {}, description="again"))
    with pytest.raises(KeyError):
        registry.resolve("get_missing")


@pytest.mark.asyncio
async def test_executor_returns_handler_payload_as_json():
    executor = ToolExecutor(registry=_registry(get_a=lambda owner_id: {"message": "ok", "owner": owner_id}))

    content = await executor.execute("get_a", 7)

    assert json.loads(content) == {"message": "ok", "owner": 7}


@pytest.mark.asyncio
async def test_executor_reports_unknown_tool_without_raising():
    executor = ToolExecutor(registry=_registry())

    content = await executor.execute("get_foo", 1)

    assert json.loads(content) == {"error": "unknown function: get_foo"}


@pytest.mark.asyncio
async def test_executor_wraps_handler_failure_in_error_payload():
    def broken(owner_id: int) -> dict:
        raise RuntimeError("database is locked")

    executor = ToolExecutor(registry=_registry(get_a=broken))

    payload = json.loads(await executor.execute("get_a", 1))

    assert payload == {"error": "get_a failed.", "details": "database is locked"}


@pytest.mark.asyncio
async def test_executor_rejects_non_object_results():
    executor = ToolExecutor(registry=_registry(get_a=lambda owner_id: ["not", "an", "object"]))

    payload = json.loads(await executor.execute("get_a", 1))

    assert payload["error"] == "get_a failed."
    assert "list" in payload["details"]


@pytest.mark.asyncio
async def test_execute_all_isolates_failures_between_siblings():
    async def ok(owner_id: int) -> dict:
        return {"message": "fine"}

    async def broken(owner_id: int) -> dict:
        raise ValueError("boom")

    executor = ToolExecutor(registry=_registry(get_ok=ok, get_broken=broken))
    calls = [
        ToolCallRequest(call_id="call_1", tool_name="get_broken"),
        ToolCallRequest(call_id="call_2", tool_name="get_ok"),
    ]

    results = await executor.execute_all(calls, 1)

    assert [result.call_id for result in results] == ["call_1", "call_2"]
    assert json.loads(results[0].content_json) == {"error": "get_broken failed.", "details": "boom"}
    assert json.loads(results[1].content_json) == {"message": "fine"}


@pytest.mark.asyncio
async def test_execute_all_runs_calls_of_one_round_concurrently():
    first_started = asyncio.Event()
    second_started = asyncio.Event()

    async def first(owner_id: int) -> dict:
        first_started.set()
        await second_started.wait()
        return {"message": "first"}

    async def second(owner_id: int) -> dict:
        second_started.set()
        await first_started.wait()
        return {"message": "second"}

    executor = ToolExecutor(registry=_registry(get_first=first, get_second=second))
    calls = [
        ToolCallRequest(call_id="call_1", tool_name="get_first"),
        ToolCallRequest(call_id="call_2", tool_name="get_second"),
    ]

    # Each handler waits on the other, so this only finishes when both are in flight.
    results = await asyncio.wait_for(executor.execute_all(calls, 1), 1)

    assert [json.loads(result.content_json)["message"] for result in results] == ["first", "second"]


@pytest.mark.asyncio
async def test_execute_all_keeps_request_order_when_completion_order_differs():
    async def slow(owner_id: int) -> dict:
        await asyncio.sleep(0.05)
        return {"message": "slow"}

    async def fast(owner_id: int) -> dict:
        return {"message": "fast"}

    executor = ToolExecutor(registry=_registry(get_slow=slow, get_fast=fast))
    calls = [
        ToolCallRequest(call_id="call_slow", tool_name="get_slow"),
        ToolCallRequest(call_id="call_fast", tool_name="get_fast"),
    ]

    results = await executor.execute_all(calls, 1)

    assert [result.call_id for result in results] == ["call_slow", "call_fast"]
    assert [json.loads(result.content_json)["message"] for result in results] == ["slow", "fast"]
