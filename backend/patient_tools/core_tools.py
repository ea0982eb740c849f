from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

from chat_agent_core.registry import ToolDefinition, ToolRegistry
from memory.clinical_store import ClinicalStore
from memory.time_utils import to_iso, utc_now

PRESCRIPTION_GRACE_DAYS = 30


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _prescription_summary(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "medicine": row.get("medicine_name"),
        "dosage": row.get("dosage"),
        "frequency": row.get("frequency"),
        "instructions": row.get("instructions"),
        "start_date": row.get("start_date"),
        "end_date": row.get("end_date"),
        "doctor": row.get("doctor_name"),
    }


def _doctor_summary(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": row.get("name"),
        "speciality": row.get("speciality"),
        "phone": row.get("phone"),
        "email": row.get("email"),
        "hospital": row.get("hospital"),
    }


class PatientDataToolset:
    """Read-only lookups the assistant may run for the signed-in patient."""

    def __init__(self, clinical: ClinicalStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.clinical = clinical
        self._clock = clock

    def get_prescriptions(self, owner_id: int) -> dict[str, Any]:
        # Prescriptions that ended within the grace window are still shown.
        cutoff = self._clock() - timedelta(days=PRESCRIPTION_GRACE_DAYS)
        rows = self.clinical.get_prescriptions(owner_id, ended_after=cutoff.date().isoformat())
        if not rows:
            return {"message": "No active prescriptions found.", "prescriptions": []}
        return {
            "message": f"Found {_plural(len(rows), 'active prescription')}.",
            "prescriptions": [_prescription_summary(row) for row in rows],
        }

    def get_reminders(self, owner_id: int) -> dict[str, Any]:
        rows = self.clinical.get_upcoming_reminders(owner_id, after=to_iso(self._clock()), limit=10)
        if not rows:
            return {"message": "No upcoming reminders found.", "reminders": []}
        return {
            "message": f"Found {_plural(len(rows), 'upcoming reminder')}.",
            "reminders": [
                {"datetime": row["reminder_datetime"], "status": row["status"], "notes": row["notes"]}
                for row in rows
            ],
        }

    def get_health_records(self, owner_id: int) -> dict[str, Any]:
        rows = self.clinical.get_health_records(owner_id, limit=10)
        if not rows:
            return {"message": "No health records found.", "health_records": []}
        records = [
            {
                "date": row["date_time"],
                "heart_rate": row["heart_rate"],
                "blood_pressure": row["blood_pressure"],
                "blood_sugar": row["blood_sugar"],
                "temperature": row["temperature"],
                "notes": row["notes"],
            }
            for row in rows
        ]
        return {
            "message": f"Found {_plural(len(records), 'health record')}.",
            "health_records": records,
            "latest": records[0],
        }

    def get_todays_schedule(self, owner_id: int) -> dict[str, Any]:
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1)
        reminders = self.clinical.get_reminders_between(
            owner_id,
            start=to_iso(start_of_day),
            end=to_iso(end_of_day),
        )
        medications = self.clinical.get_prescriptions(owner_id, ended_after=start_of_day.date().isoformat())
        if not reminders and not medications:
            message = "Nothing is scheduled for today."
        else:
            message = (
                f"Today's overview: {_plural(len(reminders), 'reminder')} "
                f"and {_plural(len(medications), 'active medication')}."
            )
        return {
            "message": message,
            "todays_reminders": [
                {"datetime": row["reminder_datetime"], "status": row["status"], "notes": row["notes"]}
                for row in reminders
            ],
            "active_medications": [
                {"medicine": row.get("medicine_name"), "dosage": row.get("dosage"), "frequency": row.get("frequency")}
                for row in medications
            ],
        }

    def get_doctors(self, owner_id: int) -> dict[str, Any]:
        primary_id = self.clinical.get_primary_doctor_id(owner_id)
        doctor_ids: list[int] = [primary_id] if primary_id is not None else []
        for doctor_id in self.clinical.get_prescribing_doctor_ids(owner_id):
            if doctor_id not in doctor_ids:
                doctor_ids.append(doctor_id)
        doctors = [_doctor_summary(row) for row in self.clinical.get_doctors(doctor_ids)]
        if not doctors:
            return {"message": "No doctor information found.", "doctors": []}
        return {
            "message": f"Found {_plural(len(doctors), 'doctor')}.",
            "primary_doctor": doctors[0],
            "doctors": doctors,
        }


def register_tools(registry: ToolRegistry, toolset: PatientDataToolset) -> None:
    registry.register(
        ToolDefinition(
            "get_prescriptions",
            toolset.get_prescriptions,
            description=(
                "Get the patient's active medicines and prescriptions. "
                "Use when the patient asks about medicines, prescriptions or what they should take."
            ),
            failure_message="Could not retrieve prescriptions.",
        )
    )
    registry.register(
        ToolDefinition(
            "get_reminders",
            toolset.get_reminders,
            description=(
                "Get the patient's upcoming reminders. "
                "Use when the patient asks about reminders, when to take medicine, or future appointments."
            ),
            failure_message="Could not retrieve reminders.",
        )
    )
    registry.register(
        ToolDefinition(
            "get_health_records",
            toolset.get_health_records,
            description=(
                "Get the patient's most recent vital-sign measurements (blood pressure, pulse, blood sugar, "
                "temperature). Use when the patient asks about their health status or vital signs."
            ),
            failure_message="Could not retrieve health records.",
        )
    )
    registry.register(
        ToolDefinition(
            "get_todays_schedule",
            toolset.get_todays_schedule,
            description=(
                "Get today's medicines and reminders together. "
                "Use when the patient asks about today's plan or what they need to do today."
            ),
            failure_message="Could not retrieve today's schedule.",
        )
    )
    registry.register(
        ToolDefinition(
            "get_doctors",
            toolset.get_doctors,
            description=(
                "Get information about the patient's doctors (primary doctor and prescribing doctors). "
                "Use when the patient asks about their doctor or contact details."
            ),
            failure_message="Could not retrieve doctor information.",
        )
    )
