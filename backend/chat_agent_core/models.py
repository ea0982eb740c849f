from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"
ROLES = {ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL}


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    tool_name: str
    arguments_json: str = "{}"

    def as_wire(self) -> dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.tool_name, "arguments": self.arguments_json},
        }


@dataclass(frozen=True)
class ToolCallResult:
    call_id: str
    tool_name: str
    content_json: str


@dataclass(frozen=True)
class ConversationTurn:
    owner_id: int
    role: str
    text: str = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    timestamp: str | None = None
    intent: str | None = None
    message_id: int | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported role: {self.role}")
        if self.tool_calls and self.role != ROLE_ASSISTANT:
            raise ValueError("Only assistant turns may request tool calls.")
        if self.role == ROLE_TOOL and not self.tool_call_id:
            raise ValueError("Tool turns must reference a tool call id.")

    def as_wire(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": self.role, "content": self.text}
        if self.tool_calls:
            message["tool_calls"] = [call.as_wire() for call in self.tool_calls]
        if self.role == ROLE_TOOL:
            message["tool_call_id"] = self.tool_call_id
        return message


@dataclass(frozen=True)
class AssistantOutput:
    text: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOLS_REQUESTED = "tools_requested"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass(frozen=True)
class OrchestrationSession:
    owner_id: int
    messages: tuple[ConversationTurn, ...]
    state: LoopState = LoopState.AWAITING_MODEL
    rounds: int = 0
    last_output: AssistantOutput | None = None
    final_text: str | None = None
    round_limit_reached: bool = False


@dataclass
class OrchestrationResult:
    text: str
    rounds: int
    messages: tuple[ConversationTurn, ...] = field(default_factory=tuple)
    round_limit_reached: bool = False
