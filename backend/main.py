"""Careline chat backend.

Run with ``uvicorn main:app`` from the ``backend`` directory.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app_settings import AppSettings, bootstrap_local_env
from chat_agent_core import (
    AuthError,
    ChatModel,
    ConversationHistoryLoader,
    ModelGateway,
    OrchestrationLoop,
    Principal,
    RejectAllValidator,
    SessionValidator,
    StaticTokenValidator,
    SupabaseSessionValidator,
    TextToolCallParser,
    ToolExecutor,
    ToolRegistry,
    bearer_token,
)
from memory import SENDER_BOT, SENDER_USER, MemoryService, SQLiteMemoryDB
from memory.time_utils import to_iso, utc_now
from patient_tools import PatientDataToolset, ReminderDispatcher, register_tools

bootstrap_local_env()
settings = AppSettings.from_env()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("careline")

HISTORY_PAGE_DEFAULT = 50
HISTORY_PAGE_MAX = 200


class ChatRequest(BaseModel):
    model_config = ConfigDict(strict=True)

    # Bounded to what a SQLite INTEGER column can hold.
    owner_id: int = Field(alias="ownerId", ge=-(2**63), le=2**63 - 1)
    message: str

    @field_validator("owner_id", mode="before")
    @classmethod
    def _accept_whole_number_floats(cls, value: Any) -> Any:
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value


class ChatRequestError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def _build_session_validator(app_settings: AppSettings) -> SessionValidator:
    if app_settings.supabase_url and app_settings.supabase_anon_key:
        return SupabaseSessionValidator(base_url=app_settings.supabase_url, anon_key=app_settings.supabase_anon_key)
    if app_settings.static_tokens:
        logger.warning("Using static token table for session validation")
        return StaticTokenValidator.from_string(app_settings.static_tokens)
    logger.warning("No session validator configured; every authenticated request will be rejected")
    return RejectAllValidator()


class CarelineApp:
    def __init__(
        self,
        app_settings: AppSettings,
        *,
        gateway: ChatModel | None = None,
        sessions: SessionValidator | None = None,
    ) -> None:
        self.settings = app_settings
        self.db = SQLiteMemoryDB(app_settings.db_path)
        self.memory = MemoryService(self.db)

        self.registry = ToolRegistry()
        self.toolset = PatientDataToolset(self.memory.clinical)
        register_tools(self.registry, self.toolset)
        self.executor = ToolExecutor(registry=self.registry)

        self.history = ConversationHistoryLoader(
            self.memory.conversation,
            default_limit=app_settings.history_limit,
        )
        if gateway is None:
            text_parser = TextToolCallParser() if app_settings.model.text_tool_fallback else None
            gateway = ModelGateway(app_settings.model, text_parser=text_parser)
        self.gateway = gateway
        self.sessions = sessions or _build_session_validator(app_settings)

        self.loop = OrchestrationLoop(
            gateway=self.gateway,
            executor=self.executor,
            registry=self.registry,
            system_prompt=app_settings.system_prompt,
            max_rounds=app_settings.max_tool_rounds,
        )
        self.reminders = ReminderDispatcher(
            clinical=self.memory.clinical,
            conversation=self.memory.conversation,
        )


container = CarelineApp(settings)
app = FastAPI(title="Careline Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _failure(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(body, status_code=status_code)


def _internal_error(exc: Exception) -> JSONResponse:
    details = str(exc) if container.settings.expose_error_details else None
    return _failure(500, "Internal server error", details)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ChatRequestError(400, "Request body must be valid JSON") from exc


def _parse_chat_request(body: Any) -> ChatRequest:
    if not isinstance(body, dict):
        raise ChatRequestError(400, "ownerId and message are required")
    if body.get("ownerId") is None or body.get("message") is None:
        raise ChatRequestError(400, "ownerId and message are required")
    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError as exc:
        raise ChatRequestError(400, "Invalid data type for ownerId or message") from exc
    if not chat_request.message.strip():
        raise ChatRequestError(400, "Message cannot be empty")
    return chat_request


def _parse_owner_query(raw: str | None) -> int:
    if raw is None or not raw.strip():
        raise ChatRequestError(400, "ownerId is required")
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ChatRequestError(400, "ownerId must be a number") from exc


def _parse_limit(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return HISTORY_PAGE_DEFAULT
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ChatRequestError(400, "limit must be a number") from exc
    return max(1, min(HISTORY_PAGE_MAX, value))


async def _authenticate(authorization: str | None) -> Principal:
    token = bearer_token(authorization)
    return await container.sessions.validate(token)


@app.post("/chat")
async def chat(request: Request, authorization: str | None = Header(default=None)):
    try:
        chat_request = _parse_chat_request(await _json_body(request))
        await _authenticate(authorization)
        owner_id = chat_request.owner_id
        conversation = container.memory.conversation

        try:
            user_turn = await asyncio.to_thread(
                conversation.append_message,
                user_id=owner_id,
                message_text=chat_request.message,
                sender_type=SENDER_USER,
            )
        except sqlite3.Error:
            logger.exception("Could not save user message for owner %s", owner_id)
            return _failure(500, "Could not save message")

        history = await container.history.load(owner_id, exclude_message_id=user_turn["message_id"])
        result = await container.loop.run(owner_id, chat_request.message, history)

        body: dict[str, Any] = {"success": True, "response": result.text}
        try:
            bot_turn = await asyncio.to_thread(
                conversation.append_message,
                user_id=owner_id,
                message_text=result.text,
                sender_type=SENDER_BOT,
            )
            body["messageId"] = bot_turn["message_id"]
        except Exception:
            logger.warning("Could not save assistant message for owner %s", owner_id, exc_info=True)

        logger.info(
            "Answered owner %s after %d tool round(s)%s",
            owner_id,
            result.rounds,
            " (round limit reached)" if result.round_limit_reached else "",
        )
        return JSONResponse(body, status_code=200)
    except ChatRequestError as exc:
        return _failure(exc.status_code, str(exc))
    except AuthError as exc:
        return _failure(401, str(exc))
    except Exception as exc:
        logger.exception("Chat pipeline error")
        return _internal_error(exc)


@app.get("/chat/history")
async def chat_history(request: Request, authorization: str | None = Header(default=None)):
    try:
        owner_id = _parse_owner_query(request.query_params.get("ownerId"))
        limit = _parse_limit(request.query_params.get("limit"))
        await _authenticate(authorization)
        rows = await asyncio.to_thread(container.memory.conversation.recent_messages, owner_id, limit)
    except ChatRequestError as exc:
        return _failure(exc.status_code, str(exc))
    except AuthError as exc:
        return _failure(401, str(exc))
    except Exception as exc:
        logger.exception("Chat history read failed")
        return _internal_error(exc)
    return {
        "success": True,
        "messages": [
            {
                "messageId": row["message_id"],
                "ownerId": row["user_id"],
                "text": row["message_text"],
                "sender": row["sender_type"],
                "timestamp": row["timestamp"],
                "intent": row["intent"],
            }
            for row in rows
        ],
    }


@app.post("/reminders/dispatch")
async def dispatch_reminders(authorization: str | None = Header(default=None)):
    try:
        await _authenticate(authorization)
        outcomes = await asyncio.to_thread(container.reminders.dispatch_due)
    except AuthError as exc:
        return _failure(401, str(exc))
    except Exception as exc:
        logger.exception("Reminder dispatch failed")
        return _internal_error(exc)
    sent = sum(1 for outcome in outcomes if outcome.success)
    return {
        "success": True,
        "sent": sent,
        "failed": len(outcomes) - sent,
        "results": [outcome.as_dict() for outcome in outcomes],
    }


@app.get("/tools/check")
async def check_tools(request: Request, authorization: str | None = Header(default=None)):
    try:
        owner_id = _parse_owner_query(request.query_params.get("ownerId"))
        await _authenticate(authorization)
        names = container.registry.list_names()
        contents = await asyncio.gather(*(container.executor.execute(name, owner_id) for name in names))
    except ChatRequestError as exc:
        return _failure(exc.status_code, str(exc))
    except AuthError as exc:
        return _failure(401, str(exc))
    except Exception as exc:
        logger.exception("Tool check failed")
        return _internal_error(exc)

    tests = []
    for name, content in zip(names, contents):
        result = json.loads(content)
        tests.append({"function": name, "success": "error" not in result, "result": result})
    return {
        "ownerId": owner_id,
        "timestamp": to_iso(utc_now()),
        "success": all(test["success"] for test in tests),
        "tests": tests,
    }
