# backend/tests/conftest.py
"""
Pytest configuration for StudyBuddy backend tests.

- Ensures that the project root (backend/) is added to sys.path
  so that `import studybuddy.*` works correctly in tests.
- Ensures environment variables cannot point tests at real services
  (MongoDB, SMTP, email relay).
- Provides both persistence backends so that the same test can be run
  against the in-memory store and the MongoDB store (on mongomock).
"""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


def _ensure_project_root_in_sys_path() -> None:
    # This file is located at: backend/tests/conftest.py
    # parents[1] -> backend/
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)

    if project_root_str not in sys.path:
        # Insert at the beginning so it has priority over site-packages, etc.
        sys.path.insert(0, project_root_str)


def _ensure_test_env_vars() -> None:
    """
    Remove environment variables that would make tests talk to real services.

    Individual tests use monkeypatch.setenv when they need a value.
    """
    for name in (
        "MONGO_URI",
        "MONGO_DB_NAME",
        "MONGO_TIMEOUT_SECONDS",
        "SMTP_HOST",
        "SMTP_PORT",
        "SMTP_USER",
        "SMTP_PASS",
        "SMTP_FROM",
        "EMAIL_API_URL",
        "EMAIL_API_KEY",
        "EMAIL_TIMEOUT_SECONDS",
        "ENGINE_TICK_SECONDS",
        "ENGINE_DUE_WINDOW_HOURS",
        "ENGINE_STALE_AFTER_MINUTES",
        "ENGINE_ENABLED",
    ):
        os.environ.pop(name, None)


_ensure_project_root_in_sys_path()
_ensure_test_env_vars()

import mongomock  # noqa: E402

from studybuddy.store.memory import InMemoryStore  # noqa: E402
from studybuddy.store.mongo import MongoStore  # noqa: E402

BASE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """テスト用の手動で進める時計。"""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class DummyNotifier:
    """send() の呼び出しを記録するだけの Notifier。fail=True なら例外を投げる。"""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((to, subject, body))


def make_mongo_store() -> MongoStore:
    client = mongomock.MongoClient()
    store = MongoStore(client[f"studybuddy_test_{uuid.uuid4().hex}"])
    store.ensure_indexes()
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def mongo_store() -> MongoStore:
    return make_mongo_store()


@pytest.fixture(params=["memory", "mongo"])
def store(request):
    """両バックエンドでパラメータ化されたストア。"""
    if request.param == "memory":
        return InMemoryStore()
    return make_mongo_store()
