# backend/tests/test_notifications_api.py

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import DummyNotifier
from studybuddy.api.deps import get_store
from studybuddy.engine.config import EngineSettings
from studybuddy.main import create_app
from studybuddy.store.errors import TransientStoreError
from studybuddy.store.memory import InMemoryStore
from studybuddy.store.schemas import Notification, NotificationKind, User, utc_now

HEADERS = {"X-User-Id": "u1"}


class UnavailableStore:
    """すべての操作で TransientStoreError を投げるストア。"""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise TransientStoreError(f"{name} timed out")

        return fail


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.create_user(User(id="u1", name="Ada", email="ada@example.com", is_verified=True))
    return store


@pytest.fixture
def notifier() -> DummyNotifier:
    return DummyNotifier()


@pytest.fixture
def client(store: InMemoryStore, notifier: DummyNotifier) -> TestClient:
    app = create_app(store=store, notifier=notifier, settings=EngineSettings())
    return TestClient(app)


def _notification(notification_id: str, *, age: timedelta, user_id: str = "u1") -> Notification:
    return Notification(
        id=notification_id,
        user_id=user_id,
        message=f"message {notification_id}",
        kind=NotificationKind.TASK_DUE,
        reference_id=f"ref-{notification_id}",
        created_at=utc_now() - age,
    )


def test_health_check(client: TestClient) -> None:
    res = client.get("/api/health")

    assert res.status_code == 200
    assert res.json() == {"status": "ok", "engine_running": False}


def test_list_notifications_requires_user_header(client: TestClient) -> None:
    res = client.get("/api/notifications")

    assert res.status_code == 401


def test_list_notifications_returns_camel_case_newest_first(client: TestClient, store: InMemoryStore) -> None:
    store.create_notification(_notification("old", age=timedelta(hours=3)))
    store.create_notification(_notification("new", age=timedelta(minutes=1)))
    store.create_notification(_notification("other", age=timedelta(minutes=1), user_id="u2"))

    res = client.get("/api/notifications", headers=HEADERS)

    assert res.status_code == 200
    data = res.json()
    assert [n["id"] for n in data] == ["new", "old"]
    assert data[0]["userId"] == "u1"
    assert data[0]["referenceId"] == "ref-new"
    assert data[0]["kind"] == "TASK_DUE"
    assert data[0]["read"] is False


def test_mark_read(client: TestClient, store: InMemoryStore) -> None:
    store.create_notification(_notification("n1", age=timedelta(hours=2)))

    res = client.post("/api/notifications/n1/read", headers=HEADERS)

    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert store.list_notifications("u1")[0].read is True


def test_mark_read_unknown_notification_is_404(client: TestClient) -> None:
    res = client.post("/api/notifications/missing/read", headers=HEADERS)

    assert res.status_code == 404


def test_mark_read_of_another_users_notification_is_404(client: TestClient, store: InMemoryStore) -> None:
    store.create_notification(_notification("n1", age=timedelta(hours=2), user_id="u2"))

    res = client.post("/api/notifications/n1/read", headers=HEADERS)

    assert res.status_code == 404
    [notification] = store.list_notifications("u2")
    assert notification.read is False
    # 所有者のメールフォールバック対象から外れていないこと
    assert [n.id for n in store.list_stale_unread(timedelta(hours=1), user_id="u2")] == ["n1"]


def test_check_email_fallback_sends_stale_unread(
    client: TestClient,
    store: InMemoryStore,
    notifier: DummyNotifier,
) -> None:
    store.create_notification(_notification("stale", age=timedelta(hours=2)))
    store.create_notification(_notification("fresh", age=timedelta(minutes=5)))

    res = client.post("/api/notifications/check-email-fallback", headers=HEADERS)

    assert res.status_code == 200
    body = res.json()
    assert body["emailed"] == ["stale"]
    assert body["scanned"] == 1
    assert [to for to, _, _ in notifier.sent] == ["ada@example.com"]

    # 2 回目は何も送らない
    again = client.post("/api/notifications/check-email-fallback", headers=HEADERS)
    assert again.json()["scanned"] == 0
    assert len(notifier.sent) == 1


def test_check_email_fallback_unknown_user_is_404(client: TestClient) -> None:
    res = client.post("/api/notifications/check-email-fallback", headers={"X-User-Id": "ghost"})

    assert res.status_code == 404


def test_store_outage_is_503(client: TestClient) -> None:
    client.app.dependency_overrides[get_store] = lambda: UnavailableStore()
    try:
        res = client.get("/api/notifications", headers=HEADERS)
    finally:
        client.app.dependency_overrides.clear()

    assert res.status_code == 503
    assert "timed out" in res.json()["detail"]


def test_engine_follows_app_lifespan_when_enabled(store: InMemoryStore, notifier: DummyNotifier) -> None:
    app = create_app(store=store, notifier=notifier, settings=EngineSettings(enabled=True))

    with TestClient(app) as client:
        assert client.get("/api/health").json()["engine_running"] is True

    assert app.state.engine.is_running is False


def test_verify_email_marks_user_verified(client: TestClient, store: InMemoryStore) -> None:
    store.create_user(User(id="u3", name="Cy", email="cy@example.com", verification_token="tok-3"))

    res = client.get("/verify-email", params={"token": "tok-3"})

    assert res.status_code == 200
    assert res.json()["status"] == "verified"
    user = store.get_user("u3")
    assert user.is_verified is True
    assert user.verification_token is None

    # 同じトークンは再利用できない
    again = client.get("/verify-email", params={"token": "tok-3"})
    assert again.status_code == 400


@pytest.mark.parametrize("params", [{}, {"token": ""}, {"token": "unknown"}])
def test_verify_email_invalid_token_is_400(client: TestClient, params) -> None:
    res = client.get("/verify-email", params=params)

    assert res.status_code == 400


def test_verify_email_store_outage_is_503(client: TestClient) -> None:
    client.app.dependency_overrides[get_store] = lambda: UnavailableStore()
    try:
        res = client.get("/verify-email", params={"token": "tok"})
    finally:
        client.app.dependency_overrides.clear()

    assert res.status_code == 503


def test_verified_user_then_receives_fallback_email(
    client: TestClient,
    store: InMemoryStore,
    notifier: DummyNotifier,
) -> None:
    store.create_user(User(id="u3", name="Cy", email="cy@example.com", verification_token="tok-3"))
    store.create_notification(_notification("n3", age=timedelta(hours=2), user_id="u3"))

    before = client.post("/api/notifications/check-email-fallback", headers={"X-User-Id": "u3"})
    assert before.json()["skipped_unverified"] == 1

    store.create_notification(_notification("n4", age=timedelta(hours=2), user_id="u3"))
    client.get("/verify-email", params={"token": "tok-3"})
    after = client.post("/api/notifications/check-email-fallback", headers={"X-User-Id": "u3"})

    assert after.json()["emailed"] == ["n4"]
    assert [to for to, _, _ in notifier.sent] == ["cy@example.com"]


class ClosableStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


@pytest.mark.parametrize("enabled", [True, False])
def test_store_is_closed_on_shutdown(notifier: DummyNotifier, enabled: bool) -> None:
    store = ClosableStore()
    app = create_app(store=store, notifier=notifier, settings=EngineSettings(enabled=enabled))

    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        assert store.closed is False

    assert store.closed is True
    assert app.state.engine.is_running is False
