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

from alert_store import SQLiteAlertDB  # noqa: E402
from medalert_core import AlertService  # noqa: E402

from fakes import RecordingNotifier, StubScorer  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "medalert-test.sqlite"
    monkeypatch.setenv("MEDALERT_DB_PATH", str(db_path))
    monkeypatch.setenv("ALLOW_ANON", "false")
    # Keep CI deterministic; scorer tests swap in their own scorer.
    monkeypatch.setenv("MEDALERT_DISABLE_EXTERNAL_SCORER", "true")
    monkeypatch.delenv("MEDALERT_NOTIFY_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("MEDALERT_SEED_DEMO", raising=False)

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def alert_db(tmp_path) -> SQLiteAlertDB:
    return SQLiteAlertDB(str(tmp_path / "alerts.sqlite"))


@pytest.fixture
def make_service(alert_db) -> Callable[..., AlertService]:
    def _make(scorer=None, notifier=None) -> AlertService:
        return AlertService(alert_db, scorer=scorer or StubScorer(), notifier=notifier or RecordingNotifier())

    return _make
