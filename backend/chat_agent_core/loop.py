from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

from .executor import ToolExecutor
from .gateway import ChatModel
from .models import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
    AssistantOutput,
    ConversationTurn,
    LoopState,
    OrchestrationResult,
    OrchestrationSession,
    ToolCallRequest,
    ToolCallResult,
)
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 5
FALLBACK_RESPONSE = "I could not generate a response. Please try again."


def _final_text(output: AssistantOutput | None) -> str:
    text = output.text if output else None
    if text and text.strip():
        return text
    return FALLBACK_RESPONSE


def _tool_turns(
    owner_id: int,
    calls: Sequence[ToolCallRequest],
    results: Sequence[ToolCallResult],
) -> tuple[ConversationTurn, ...]:
    if [call.call_id for call in calls] != [result.call_id for result in results]:
        raise RuntimeError("Tool results do not answer the requested calls in order.")
    return tuple(
        ConversationTurn(owner_id=owner_id, role=ROLE_TOOL, text=result.content_json, tool_call_id=result.call_id)
        for result in results
    )


def _require_output(session: OrchestrationSession) -> AssistantOutput:
    if session.last_output is None:
        raise ValueError("Session has no model output to act on.")
    return session.last_output


class OrchestrationLoop:
    """Turns one user message into one assistant answer, consulting tools as the model asks.

    States: AWAITING_MODEL -> (TOOLS_REQUESTED -> EXECUTING_TOOLS -> AWAITING_MODEL)* -> DONE.
    Each ``step`` returns a new session; the message tuple of a session is never mutated.
    After ``max_rounds`` tool rounds the next model answer is final even if it asks for more tools.
    """

    def __init__(
        self,
        *,
        gateway: ChatModel,
        executor: ToolExecutor,
        registry: ToolRegistry,
        system_prompt: str,
        max_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.gateway = gateway
        self.executor = executor
        self.registry = registry
        self.system_prompt = system_prompt
        self.max_rounds = max_rounds

    def start(
        self,
        owner_id: int,
        message: str,
        history: Sequence[ConversationTurn] = (),
    ) -> OrchestrationSession:
        messages = (
            ConversationTurn(owner_id=owner_id, role=ROLE_SYSTEM, text=self.system_prompt),
            *history,
            ConversationTurn(owner_id=owner_id, role=ROLE_USER, text=message),
        )
        return OrchestrationSession(owner_id=owner_id, messages=tuple(messages))

    async def step(self, session: OrchestrationSession) -> OrchestrationSession:
        if session.state is LoopState.AWAITING_MODEL:
            return await self._ask_model(session)
        if session.state is LoopState.TOOLS_REQUESTED:
            return self._record_tool_request(session)
        if session.state is LoopState.EXECUTING_TOOLS:
            return await self._execute_tools(session)
        raise ValueError("Orchestration session is already finished.")

    async def run(
        self,
        owner_id: int,
        message: str,
        history: Sequence[ConversationTurn] = (),
    ) -> OrchestrationResult:
        session = self.start(owner_id, message, history)
        while session.state is not LoopState.DONE:
            session = await self.step(session)
        return OrchestrationResult(
            text=session.final_text or FALLBACK_RESPONSE,
            rounds=session.rounds,
            messages=session.messages,
            round_limit_reached=session.round_limit_reached,
        )

    async def _ask_model(self, session: OrchestrationSession) -> OrchestrationSession:
        logger.info("Model call for owner %s (tool rounds so far: %d)", session.owner_id, session.rounds)
        output = await self.gateway.complete(session.messages, self.registry.list_schemas())
        if not output.wants_tools:
            return replace(session, state=LoopState.DONE, last_output=output, final_text=_final_text(output))
        if session.rounds >= self.max_rounds:
            logger.warning(
                "Tool round limit (%d) reached for owner %s; returning best-effort answer",
                self.max_rounds,
                session.owner_id,
            )
            return replace(
                session,
                state=LoopState.DONE,
                last_output=output,
                final_text=_final_text(output),
                round_limit_reached=True,
            )
        return replace(session, state=LoopState.TOOLS_REQUESTED, last_output=output)

    def _record_tool_request(self, session: OrchestrationSession) -> OrchestrationSession:
        output = _require_output(session)
        assistant_turn = ConversationTurn(
            owner_id=session.owner_id,
            role=ROLE_ASSISTANT,
            text=output.text or "",
            tool_calls=output.tool_calls,
        )
        return replace(session, state=LoopState.EXECUTING_TOOLS, messages=session.messages + (assistant_turn,))

    async def _execute_tools(self, session: OrchestrationSession) -> OrchestrationSession:
        output = _require_output(session)
        calls = output.tool_calls
        logger.info(
            "Executing %d tool call(s) for owner %s: %s",
            len(calls),
            session.owner_id,
            ", ".join(call.tool_name for call in calls),
        )
        results = await self.executor.execute_all(calls, session.owner_id)
        return replace(
            session,
            state=LoopState.AWAITING_MODEL,
            messages=session.messages + _tool_turns(session.owner_id, calls, results),
            rounds=session.rounds + 1,
        )
