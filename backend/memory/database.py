from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteMemoryDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS doctors (
                  doctor_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  name TEXT NOT NULL,
                  speciality TEXT,
                  phone TEXT,
                  email TEXT,
                  hospital TEXT,
                  license_number TEXT,
                  created_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS users (
                  user_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  first_name TEXT NOT NULL,
                  last_name TEXT NOT NULL,
                  birth_date TEXT,
                  phone TEXT,
                  email TEXT,
                  role TEXT NOT NULL DEFAULT 'user',
                  primary_doctor_id INTEGER REFERENCES doctors(doctor_id),
                  registration_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS medicines (
                  medicine_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  name TEXT NOT NULL,
                  type TEXT,
                  dosage TEXT,
                  side_effects TEXT,
                  instructions TEXT,
                  created_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS prescriptions (
                  prescription_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id INTEGER NOT NULL REFERENCES users(user_id),
                  doctor_id INTEGER REFERENCES doctors(doctor_id),
                  medicine_id INTEGER NOT NULL REFERENCES medicines(medicine_id),
                  start_date TEXT NOT NULL,
                  end_date TEXT,
                  dosage TEXT,
                  frequency TEXT,
                  instructions TEXT,
                  created_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS health_records (
                  record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id INTEGER NOT NULL REFERENCES users(user_id),
                  date_time TEXT NOT NULL,
                  heart_rate INTEGER,
                  blood_pressure TEXT,
                  blood_sugar REAL,
                  temperature REAL,
                  notes TEXT,
                  created_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reminders (
                  reminder_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id INTEGER NOT NULL REFERENCES users(user_id),
                  prescription_id INTEGER REFERENCES prescriptions(prescription_id),
                  reminder_datetime TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'Pending',
                  notes TEXT,
                  created_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS chat_messages (
                  message_id INTEGER PRIMARY KEY AUTOINCREMENT,
                  user_id INTEGER NOT NULL,
                  message_text TEXT NOT NULL,
                  sender_type TEXT NOT NULL CHECK (sender_type IN ('User', 'Bot')),
                  timestamp TEXT NOT NULL,
                  intent TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_prescriptions_user_created
                  ON prescriptions(user_id, created_date DESC);
                CREATE INDEX IF NOT EXISTS idx_health_records_user_time
                  ON health_records(user_id, date_time DESC);
                CREATE INDEX IF NOT EXISTS idx_reminders_user_time
                  ON reminders(user_id, reminder_datetime);
                CREATE INDEX IF NOT EXISTS idx_reminders_status_time
                  ON reminders(status, reminder_datetime);
                CREATE INDEX IF NOT EXISTS idx_chat_messages_user_time
                  ON chat_messages(user_id, timestamp, message_id);
                """
            )
