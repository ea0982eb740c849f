from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fakes import ScriptedModel  # noqa: E402
from memory import MemoryService, SQLiteMemoryDB  # noqa: E402

OWNER_TOKENS = {1: "token-owner-1", 2: "token-owner-2"}


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "careline-test.sqlite"
    monkeypatch.setenv("CARELINE_DB_PATH", str(db_path))
    monkeypatch.setenv("CARELINE_ENV", "test")
    monkeypatch.setenv("CARELINE_STATIC_TOKENS", ",".join(f"{token}:{owner}" for owner, token in OWNER_TOKENS.items()))
    # Keep CI offline; nothing may reach Supabase or the model provider.
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "")
    monkeypatch.setenv("GROQ_API_KEY", "test-key")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def install_model(backend_module, monkeypatch) -> Callable[..., ScriptedModel]:
    """Swap the app container for one whose model answers from a script."""

    def _install(*outputs, settings=None) -> ScriptedModel:
        model = ScriptedModel(outputs)
        container = backend_module.CarelineApp(settings or backend_module.settings, gateway=model)
        monkeypatch.setattr(backend_module, "container", container)
        return model

    return _install


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[int], dict[str, str]]:
    def _make(owner_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {OWNER_TOKENS[owner_id]}"}

    return _make


@pytest.fixture
def memory_service(tmp_path) -> MemoryService:
    return MemoryService(SQLiteMemoryDB(str(tmp_path / "careline-unit.sqlite")))
