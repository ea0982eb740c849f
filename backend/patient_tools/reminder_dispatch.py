from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from memory.clinical_store import ClinicalStore
from memory.conversation_store import ConversationStore
from memory.time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

REMINDER_INTENT = "reminder"


@dataclass
class DispatchOutcome:
    reminder_id: int
    success: bool
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"reminderId": self.reminder_id, "success": self.success}
        if self.error:
            payload["error"] = self.error
        return payload


def reminder_text(reminder: dict[str, Any]) -> str:
    medicine = reminder.get("medicine_name") or "your medicine"
    dosage = reminder.get("dosage")
    frequency = reminder.get("frequency")
    text = f"Reminder: it is time to take {medicine}"
    if dosage:
        text += f" ({dosage})"
    if frequency:
        text += f" - {frequency}"
    return text + ". Remember to take your medicine!"


class ReminderDispatcher:
    """Posts due reminders into each patient's chat as system-generated assistant turns."""

    def __init__(
        self,
        *,
        clinical: ClinicalStore,
        conversation: ConversationStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.clinical = clinical
        self.conversation = conversation
        self._clock = clock

    def dispatch_due(self) -> list[DispatchOutcome]:
        due = self.clinical.get_due_reminders(due_before=to_iso(self._clock()))
        if due:
            logger.info("Dispatching %d due reminder(s)", len(due))
        return [self._dispatch_one(reminder) for reminder in due]

    def _dispatch_one(self, reminder: dict[str, Any]) -> DispatchOutcome:
        reminder_id = reminder["reminder_id"]
        try:
            posted = self.conversation.post_reminder(
                reminder_id,
                user_id=reminder["user_id"],
                message_text=reminder_text(reminder),
                intent=REMINDER_INTENT,
            )
        except sqlite3.Error as exc:
            logger.warning("Could not post reminder %s: %s", reminder_id, exc)
            return DispatchOutcome(reminder_id=reminder_id, success=False, error=str(exc))
        if posted is None:
            return DispatchOutcome(reminder_id=reminder_id, success=False, error="Reminder is no longer pending")
        return DispatchOutcome(reminder_id=reminder_id, success=True)
