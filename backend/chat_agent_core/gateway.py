from __future__ import annotations

import itertools
import json
import logging
import re
import time
from typing import Any, Protocol, Sequence

import httpx

from app_settings import ModelSettings

from .models import AssistantOutput, ConversationTurn, ToolCallRequest

logger = logging.getLogger(__name__)

_CALL_COUNTER = itertools.count(1)


class ModelGatewayError(RuntimeError):
    pass


class ChatModel(Protocol):
    async def complete(
        self,
        messages: Sequence[ConversationTurn],
        tool_schemas: list[dict[str, Any]],
    ) -> AssistantOutput: ...


def new_call_id() -> str:
    return f"call_{int(time.time() * 1000)}_{next(_CALL_COUNTER)}"


class TextToolCallParser:
    """Recovers tool calls some deployments emit inline, e.g. ``<function=get_reminders></function>``."""

    _MARKER = re.compile(r"<function=(\w+)>\s*(?:\{\s*\})?\s*</function>")
    _GAPS = re.compile(r"[ \t]{2,}")

    def parse(self, text: str) -> tuple[str, tuple[ToolCallRequest, ...]]:
        calls = tuple(
            ToolCallRequest(call_id=new_call_id(), tool_name=match.group(1), arguments_json="{}")
            for match in self._MARKER.finditer(text)
        )
        if not calls:
            return text, ()
        return self._GAPS.sub(" ", self._MARKER.sub("", text)).strip(), calls


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def _coerce_content(content: Any) -> str | None:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    parts.append(text_value)
        return "\n".join(parts)
    return None


def _coerce_arguments(raw: Any) -> str:
    if isinstance(raw, dict):
        return json.dumps(raw)
    if isinstance(raw, str) and raw.strip():
        return raw
    return "{}"


def _structured_tool_calls(raw_calls: Any) -> tuple[ToolCallRequest, ...]:
    if not isinstance(raw_calls, list):
        return ()
    calls: list[ToolCallRequest] = []
    for item in raw_calls:
        if not isinstance(item, dict):
            continue
        function = item.get("function")
        if not isinstance(function, dict):
            continue
        name = function.get("name")
        if not isinstance(name, str) or not name.strip():
            logger.warning("Dropping tool call without a function name")
            continue
        call_id = item.get("id")
        calls.append(
            ToolCallRequest(
                call_id=call_id if isinstance(call_id, str) and call_id else new_call_id(),
                tool_name=name.strip(),
                arguments_json=_coerce_arguments(function.get("arguments")),
            )
        )
    return tuple(calls)


class ModelGateway:
    """OpenAI-compatible chat-completions client with tool calling.

    Generation parameters come from deployment settings and are identical on
    every call. Transport and HTTP failures raise ``ModelGatewayError``; this
    class never retries.
    """

    def __init__(
        self,
        settings: ModelSettings,
        *,
        text_parser: TextToolCallParser | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.text_parser = text_parser
        self._transport = transport

    def build_payload(
        self,
        messages: Sequence[ConversationTurn],
        tool_schemas: list[dict[str, Any]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.settings.model,
            "messages": [turn.as_wire() for turn in messages],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "top_p": self.settings.top_p,
            "stream": False,
        }
        if tool_schemas:
            payload["tools"] = tool_schemas
            payload["tool_choice"] = "auto"
        return payload

    async def complete(
        self,
        messages: Sequence[ConversationTurn],
        tool_schemas: list[dict[str, Any]],
    ) -> AssistantOutput:
        if not self.settings.api_key:
            raise ModelGatewayError("Model endpoint API key is not configured.")
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        payload = self.build_payload(messages, tool_schemas)
        timeout = httpx.Timeout(self.settings.timeout_seconds, connect=8.0)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.settings.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise ModelGatewayError("Model endpoint timed out.") from exc
        except httpx.HTTPError as exc:
            raise ModelGatewayError(f"Failed to reach model endpoint: {exc}") from exc

        if response.status_code >= 400:
            raise ModelGatewayError(
                f"Model endpoint error ({response.status_code}): {_provider_error_message(response)}"
            )
        try:
            completion = response.json()
        except ValueError as exc:
            raise ModelGatewayError("Model endpoint returned invalid JSON.") from exc
        return self.parse_completion(completion)

    def parse_completion(self, completion: Any) -> AssistantOutput:
        choices = completion.get("choices") if isinstance(completion, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ModelGatewayError("Model endpoint returned no choices.")
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise ModelGatewayError("Model endpoint returned a choice without a message.")

        text = _coerce_content(message.get("content"))
        tool_calls = _structured_tool_calls(message.get("tool_calls"))
        if not tool_calls and text and self.text_parser is not None:
            text, tool_calls = self.text_parser.parse(text)
            if tool_calls:
                logger.info("Recovered %d tool call(s) from textual markers", len(tool_calls))
        return AssistantOutput(text=text, tool_calls=tool_calls)
