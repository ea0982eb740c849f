#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

SMOKE_TOKEN = "smoke-token"


@dataclass
class Scenario:
  name: str
  message: str
  expected_tool: str


def seed_demo_patient(db: Any) -> int:
  now = datetime.now(timezone.utc)
  created = now.isoformat(timespec="microseconds")
  with db.connection() as conn:
    doctor_id = conn.execute(
      "INSERT INTO doctors (name, speciality, phone, created_date) VALUES (?, ?, ?, ?)",
      ("Dr. Rivera", "General practice", "+1 412 555 0100", created),
    ).lastrowid
    user_id = conn.execute(
      "INSERT INTO users (first_name, last_name, primary_doctor_id, registration_date) VALUES (?, ?, ?, ?)",
      ("Smoke", "Patient", doctor_id, created),
    ).lastrowid
    medicine_id = conn.execute(
      "INSERT INTO medicines (name, created_date) VALUES (?, ?)",
      ("Metformin", created),
    ).lastrowid
    prescription_id = conn.execute(
      """
      INSERT INTO prescriptions (user_id, doctor_id, medicine_id, start_date, dosage, frequency, created_date)
      VALUES (?, ?, ?, ?, ?, ?, ?)
      """,
      (user_id, doctor_id, medicine_id, now.date().isoformat(), "500 mg", "twice daily", created),
    ).lastrowid
    conn.execute(
      """
      INSERT INTO reminders (user_id, prescription_id, reminder_datetime, notes, created_date)
      VALUES (?, ?, ?, ?, ?)
      """,
      (user_id, prescription_id, (now + timedelta(hours=2)).isoformat(timespec="microseconds"), "with dinner", created),
    )
    conn.execute(
      """
      INSERT INTO health_records (user_id, date_time, heart_rate, blood_pressure, created_date)
      VALUES (?, ?, ?, ?, ?)
      """,
      (user_id, (now - timedelta(days=1)).isoformat(timespec="microseconds"), 72, "128/82", created),
    )
  return int(user_id)


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  # The smoke run owns a throwaway database and a fixed token; the model endpoint stays real.
  scratch = tempfile.mkdtemp(prefix="careline-smoke-")
  os.environ["CARELINE_DB_PATH"] = str(Path(scratch) / "smoke.sqlite")
  os.environ["CARELINE_STATIC_TOKENS"] = f"{SMOKE_TOKEN}:smoke"
  os.environ["SUPABASE_URL"] = ""

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)
  container = backend_module.container
  owner_id = seed_demo_patient(container.db)

  exercised: list[str] = []
  original_execute = container.executor.execute

  async def recording_execute(tool_name: str, call_owner_id: int) -> str:
    exercised.append(tool_name)
    return await original_execute(tool_name, call_owner_id)

  container.executor.execute = recording_execute

  scenarios = [
    Scenario(name="Medicines", message="What medicine am I on?", expected_tool="get_prescriptions"),
    Scenario(name="Reminders", message="When is my next reminder?", expected_tool="get_reminders"),
    Scenario(name="Vitals", message="How was my blood pressure recently?", expected_tool="get_health_records"),
    Scenario(name="Today", message="What do I need to do today?", expected_tool="get_todays_schedule"),
    Scenario(name="Doctor", message="How can I reach my doctor?", expected_tool="get_doctors"),
  ]
  headers = {"Authorization": f"Bearer {SMOKE_TOKEN}"}
  results: list[dict[str, Any]] = []

  with TestClient(backend_module.app) as client:
    for scenario in scenarios:
      exercised.clear()
      response = client.post("/chat", headers=headers, json={"ownerId": owner_id, "message": scenario.message})
      try:
        body = response.json()
      except ValueError:
        body = {"raw": response.text[:500]}
      tools_used = list(exercised)
      results.append(
        {
          "name": scenario.name,
          "expected_tool": scenario.expected_tool,
          "tools_used": tools_used,
          "status_code": response.status_code,
          "body": body,
          "pass": response.status_code == 200 and scenario.expected_tool in tools_used,
        }
      )

  passed = sum(1 for item in results if item["pass"])
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# Careline Chat Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- Model: `{backend_module.settings.model.model}`",
    f"- Passed: `{passed}/{len(results)}`",
    "",
  ]
  for item in results:
    status = "PASS" if item["pass"] else "FAIL"
    report_lines.append(f"### {status} - {item['name']}")
    report_lines.append(f"- Expected tool: `{item['expected_tool']}`")
    report_lines.append(f"- Tools used: `{', '.join(item['tools_used']) or 'none'}`")
    report_lines.append(f"- Status code: `{item['status_code']}`")
    report_lines.append("```json")
    report_lines.append(json.dumps(item["body"], indent=2, ensure_ascii=False))
    report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "CHAT_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(results)} scenarios.")

  return 0 if passed == len(results) else 1


if __name__ == "__main__":
  raise SystemExit(run())
