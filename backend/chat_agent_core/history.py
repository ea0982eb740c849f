from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from .models import ROLE_ASSISTANT, ROLE_USER, ConversationTurn

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class MessageStore(Protocol):
    def recent_messages(
        self,
        user_id: int,
        limit: int = ...,
        *,
        exclude_message_id: int | None = None,
    ) -> list[dict[str, Any]]: ...


def turn_from_row(row: dict[str, Any]) -> ConversationTurn:
    role = ROLE_USER if row.get("sender_type") == "User" else ROLE_ASSISTANT
    return ConversationTurn(
        owner_id=row["user_id"],
        role=role,
        text=str(row.get("message_text") or ""),
        timestamp=row.get("timestamp"),
        intent=row.get("intent"),
        message_id=row.get("message_id"),
    )


class ConversationHistoryLoader:
    def __init__(self, store: MessageStore, *, default_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._store = store
        self.default_limit = default_limit

    async def load(
        self,
        owner_id: int,
        limit: int | None = None,
        *,
        exclude_message_id: int | None = None,
    ) -> list[ConversationTurn]:
        """Most recent turns for ``owner_id``, oldest first.

        A store failure degrades to an empty history; the caller still answers.
        """
        effective_limit = self.default_limit if limit is None else max(0, limit)
        if effective_limit == 0:
            return []
        try:
            rows = await asyncio.to_thread(
                self._store.recent_messages,
                owner_id,
                effective_limit,
                exclude_message_id=exclude_message_id,
            )
        except Exception:
            logger.warning("History read failed for owner %s; continuing without history", owner_id, exc_info=True)
            return []
        return [turn_from_row(row) for row in rows if str(row.get("message_text") or "").strip()]
