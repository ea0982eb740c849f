from .executor import ToolExecutor
from .gateway import ChatModel, ModelGateway, ModelGatewayError, TextToolCallParser
from .history import ConversationHistoryLoader
from .loop import DEFAULT_MAX_TOOL_ROUNDS, FALLBACK_RESPONSE, OrchestrationLoop
from .models import (
    AssistantOutput,
    ConversationTurn,
    LoopState,
    OrchestrationResult,
    OrchestrationSession,
    ToolCallRequest,
    ToolCallResult,
)
from .registry import ToolDefinition, ToolRegistry
from .session import (
    AuthError,
    Principal,
    RejectAllValidator,
    SessionValidator,
    StaticTokenValidator,
    SupabaseSessionValidator,
    bearer_token,
)

__all__ = [
    "DEFAULT_MAX_TOOL_ROUNDS",
    "FALLBACK_RESPONSE",
    "AssistantOutput",
    "AuthError",
    "ChatModel",
    "ConversationHistoryLoader",
    "ConversationTurn",
    "LoopState",
    "ModelGateway",
    "ModelGatewayError",
    "OrchestrationLoop",
    "OrchestrationResult",
    "OrchestrationSession",
    "Principal",
    "RejectAllValidator",
    "SessionValidator",
    "StaticTokenValidator",
    "SupabaseSessionValidator",
    "TextToolCallParser",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDefinition",
    "ToolExecutor",
    "ToolRegistry",
    "bearer_token",
]
