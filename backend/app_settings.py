from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful and patient health assistant for older patients. "
    "Help them with questions about their medicines, reminders, vital signs and care team, "
    "using plain language without medical jargon. "
    "You can look up the patient's own data with these functions: "
    "get_prescriptions (active medicines and prescriptions), "
    "get_reminders (upcoming reminders), "
    "get_health_records (recent vital signs such as blood pressure and pulse), "
    "get_todays_schedule (today's medicines and reminders together), "
    "get_doctors (the patient's doctors and how to contact them). "
    "Call the relevant function whenever the answer depends on the patient's data, "
    "and base your answer on what it returns. "
    "If a lookup fails or returns nothing, say so honestly. "
    "Never be categorical about diagnoses or treatment; when in doubt, encourage the patient to contact their doctor."
)


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class ModelSettings:
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1.0
    timeout_seconds: float = 30.0
    text_tool_fallback: bool = True

    @classmethod
    def from_env(cls) -> "ModelSettings":
        return cls(
            base_url=(os.getenv("CARELINE_MODEL_BASE_URL") or "https://api.groq.com/openai/v1").rstrip("/"),
            api_key=(os.getenv("GROQ_API_KEY") or "").strip(),
            model=(os.getenv("CARELINE_MODEL") or "llama-3.3-70b-versatile").strip(),
            temperature=_env_float("CARELINE_MODEL_TEMPERATURE", 0.7),
            max_tokens=_env_int("CARELINE_MODEL_MAX_TOKENS", 1024, minimum=1),
            top_p=_env_float("CARELINE_MODEL_TOP_P", 1.0),
            timeout_seconds=_env_float("CARELINE_MODEL_TIMEOUT_SECONDS", 30.0),
            text_tool_fallback=_env_bool("CARELINE_TEXT_TOOL_FALLBACK", True),
        )


@dataclass(frozen=True)
class AppSettings:
    db_path: str
    environment: str
    log_level: str
    history_limit: int
    max_tool_rounds: int
    system_prompt: str
    supabase_url: str
    supabase_anon_key: str
    static_tokens: str
    allowed_origins: tuple[str, ...]
    model: ModelSettings

    @property
    def expose_error_details(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "AppSettings":
        default_db = Path(__file__).resolve().parent / "careline.sqlite"
        origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
        return cls(
            db_path=os.getenv("CARELINE_DB_PATH", str(default_db)),
            environment=(os.getenv("CARELINE_ENV") or "production").strip().lower(),
            log_level=(os.getenv("CARELINE_LOG_LEVEL") or "INFO").strip().upper(),
            history_limit=_env_int("CARELINE_HISTORY_LIMIT", 20),
            max_tool_rounds=_env_int("CARELINE_MAX_TOOL_ROUNDS", 5, minimum=1),
            system_prompt=os.getenv("CARELINE_SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            supabase_url=(os.getenv("SUPABASE_URL") or "").strip().rstrip("/"),
            supabase_anon_key=(os.getenv("SUPABASE_ANON_KEY") or "").strip(),
            static_tokens=(os.getenv("CARELINE_STATIC_TOKENS") or "").strip(),
            allowed_origins=tuple(origin.strip() for origin in origins if origin.strip()),
            model=ModelSettings.from_env(),
        )
