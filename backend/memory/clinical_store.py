from __future__ import annotations

from typing import Any

from .database import SQLiteMemoryDB


class PatientNotFoundError(LookupError):
    pass


class ClinicalStore:
    """Read access to the patient tables the assistant's tools draw from."""

    def __init__(self, db: SQLiteMemoryDB) -> None:
        self._db = db

    def get_prescriptions(self, user_id: int, *, ended_after: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT p.prescription_id, p.dosage, p.frequency, p.instructions,
                           p.start_date, p.end_date, p.created_date,
                           m.name AS medicine_name, d.name AS doctor_name
                    FROM prescriptions p
                    LEFT JOIN medicines m ON m.medicine_id = p.medicine_id
                    LEFT JOIN doctors d ON d.doctor_id = p.doctor_id
                    WHERE p.user_id = ?
                      AND (p.end_date IS NULL OR p.end_date >= ?)
                    ORDER BY p.created_date DESC, p.prescription_id DESC
                    """,
                    (user_id, ended_after),
                ).fetchall()
            ]

    def get_upcoming_reminders(self, user_id: int, *, after: str, limit: int = 10) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT reminder_id, prescription_id, reminder_datetime, status, notes
                    FROM reminders
                    WHERE user_id = ? AND reminder_datetime >= ?
                    ORDER BY reminder_datetime ASC
                    LIMIT ?
                    """,
                    (user_id, after, max(1, limit)),
                ).fetchall()
            ]

    def get_reminders_between(self, user_id: int, *, start: str, end: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT reminder_id, prescription_id, reminder_datetime, status, notes
                    FROM reminders
                    WHERE user_id = ? AND reminder_datetime >= ? AND reminder_datetime < ?
                    ORDER BY reminder_datetime ASC
                    """,
                    (user_id, start, end),
                ).fetchall()
            ]

    def get_health_records(self, user_id: int, limit: int = 10) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT record_id, date_time, heart_rate, blood_pressure, blood_sugar, temperature, notes
                    FROM health_records
                    WHERE user_id = ?
                    ORDER BY date_time DESC
                    LIMIT ?
                    """,
                    (user_id, max(1, limit)),
                ).fetchall()
            ]

    def get_primary_doctor_id(self, user_id: int) -> int | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT primary_doctor_id FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if not row:
            raise PatientNotFoundError(f"Patient not found: {user_id}")
        return row["primary_doctor_id"]

    def get_prescribing_doctor_ids(self, user_id: int) -> list[int]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT doctor_id, MIN(created_date) AS first_seen
                FROM prescriptions
                WHERE user_id = ? AND doctor_id IS NOT NULL
                GROUP BY doctor_id
                ORDER BY first_seen ASC
                """,
                (user_id,),
            ).fetchall()
        return [row["doctor_id"] for row in rows]

    def get_doctors(self, doctor_ids: list[int]) -> list[dict[str, Any]]:
        if not doctor_ids:
            return []
        placeholders = ", ".join("?" for _ in doctor_ids)
        with self._db.connection() as conn:
            rows = {
                row["doctor_id"]: dict(row)
                for row in conn.execute(
                    f"""
                    SELECT doctor_id, name, speciality, phone, email, hospital
                    FROM doctors
                    WHERE doctor_id IN ({placeholders})
                    """,
                    tuple(doctor_ids),
                ).fetchall()
            }
        return [rows[doctor_id] for doctor_id in doctor_ids if doctor_id in rows]

    def get_due_reminders(self, *, due_before: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            return [
                dict(row)
                for row in conn.execute(
                    """
                    SELECT r.reminder_id, r.user_id, r.reminder_datetime, r.notes,
                           p.dosage, p.frequency, m.name AS medicine_name
                    FROM reminders r
                    LEFT JOIN prescriptions p ON p.prescription_id = r.prescription_id
                    LEFT JOIN medicines m ON m.medicine_id = p.medicine_id
                    WHERE r.status = 'Pending' AND r.reminder_datetime <= ?
                    ORDER BY r.reminder_datetime ASC
                    """,
                    (due_before,),
                ).fetchall()
            ]
