# backend/tests/test_engine_scheduler.py

import threading
import time

from conftest import DummyNotifier
from studybuddy.engine.config import EngineSettings
from studybuddy.engine.service import NotificationEngine
from studybuddy.store.memory import InMemoryStore


def _engine(tick_seconds: int = 60) -> NotificationEngine:
    return NotificationEngine(
        InMemoryStore(),
        DummyNotifier(),
        settings=EngineSettings(tick_seconds=tick_seconds),
    )


def test_start_and_stop_lifecycle() -> None:
    engine = _engine()

    handle = engine.start()
    try:
        assert handle.running is True
        assert engine.is_running is True
    finally:
        handle.stop()

    assert handle.running is False
    assert engine.is_running is False


def test_double_start_is_skipped(caplog) -> None:
    engine = _engine()
    caplog.set_level("INFO")

    first = engine.start()
    try:
        scheduler = engine._scheduler
        engine.start()

        assert engine._scheduler is scheduler
        assert "already running" in caplog.text
    finally:
        first.stop()


def test_stop_without_start_is_noop() -> None:
    engine = _engine()

    engine.stop()
    engine.stop(wait=False)

    assert engine.is_running is False


def test_engine_can_be_restarted() -> None:
    engine = _engine()

    engine.start().stop()
    handle = engine.start()
    try:
        assert engine.is_running is True
    finally:
        handle.stop()


def test_cycle_runs_on_each_tick(monkeypatch) -> None:
    engine = _engine(tick_seconds=1)
    ticked = threading.Event()
    original = engine.run_cycle

    def run_cycle():
        report = original()
        ticked.set()
        return report

    monkeypatch.setattr(engine, "run_cycle", run_cycle)

    handle = engine.start()
    try:
        assert ticked.wait(timeout=5), "no cycle ran within 5 seconds"
    finally:
        handle.stop(wait=True)

    assert engine.is_running is False


def test_stop_waits_for_in_flight_cycle(monkeypatch) -> None:
    engine = _engine(tick_seconds=1)
    cycle_started = threading.Event()
    cycle_finished = threading.Event()

    def slow_cycle():
        cycle_started.set()
        time.sleep(1.5)
        cycle_finished.set()

    monkeypatch.setattr(engine, "run_cycle", slow_cycle)

    handle = engine.start()
    try:
        assert cycle_started.wait(timeout=5), "no cycle started within 5 seconds"
    finally:
        handle.stop(wait=True)

    # stop() はサイクル完了まで戻らない
    assert cycle_finished.is_set()
    assert engine.is_running is False
