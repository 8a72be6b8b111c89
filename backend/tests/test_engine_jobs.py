# backend/tests/test_engine_jobs.py

import threading
from datetime import timedelta

from conftest import BASE_TIME, DummyNotifier, FakeClock
from studybuddy.engine.config import EngineSettings
from studybuddy.engine.factory import build_engine
from studybuddy.engine.jobs import run_forever, run_once
from studybuddy.engine.service import NotificationEngine
from studybuddy.notifications.service import LoggingEmailSender
from studybuddy.store.memory import InMemoryStore
from studybuddy.store.schemas import Task


def test_run_once_runs_a_single_cycle(caplog) -> None:
    store = InMemoryStore()
    store.create_task(
        Task(id="T1", user_id="u1", title="Essay", due_at=BASE_TIME + timedelta(hours=1))
    )
    engine = NotificationEngine(store, DummyNotifier(), clock=FakeClock())

    caplog.set_level("INFO")
    report = run_once(engine=engine)

    assert len(report.tasks.created) == 1
    assert report.started_at == BASE_TIME
    assert "Cycle done: tasks=1 events=0 emailed=0 failed=0" in caplog.text


def test_run_forever_stops_engine_when_event_is_set() -> None:
    engine = NotificationEngine(InMemoryStore(), DummyNotifier(), settings=EngineSettings(tick_seconds=60))
    stop_event = threading.Event()
    started = threading.Event()

    original_start = engine.start

    def start():
        handle = original_start()
        started.set()
        return handle

    engine.start = start

    runner = threading.Thread(target=run_forever, kwargs={"engine": engine, "stop_event": stop_event})
    runner.start()
    assert started.wait(timeout=5)
    assert engine.is_running is True

    stop_event.set()
    runner.join(timeout=5)

    assert not runner.is_alive()
    assert engine.is_running is False


def test_build_engine_uses_environment_defaults() -> None:
    engine = build_engine()

    assert isinstance(engine.settings, EngineSettings)
    assert isinstance(engine._store, InMemoryStore)
    assert isinstance(engine._notifier, LoggingEmailSender)
