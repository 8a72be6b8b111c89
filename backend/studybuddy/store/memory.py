# backend/studybuddy/store/memory.py

"""
プロセス内マップによる PersistenceGateway 実装。

- ストア全体を 1 つの reader/writer ロックで保護する（粗粒度）
- 読み取りは並行、書き込みは排他
- 返却値・格納値はすべてコピーし、呼び出し側と内部状態を共有しない

MONGO_URI 未設定時のデフォルトバックエンド。テストでもそのまま使う。
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, TypeVar

from .errors import NotFoundError
from .gateway import due_window, normalize_now, notification_kind, stale_cutoff
from .schemas import (
    Event,
    Notification,
    NotificationKind,
    StoreModel,
    Task,
    User,
    WorkItem,
    WorkItemKind,
    new_id,
)

ModelT = TypeVar("ModelT", bound=StoreModel)


class ReadWriteLock:
    """
    複数 reader / 単一 writer のロック。

    writer が待機している間は新しい reader を入れない（writer 優先）。
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer_active or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            with self._cond:
                self._writer_active = False
                self._cond.notify_all()


def _copy(model: ModelT) -> ModelT:
    return model.model_copy(deep=True)


class InMemoryStore:
    """
    スレッドセーフなインメモリストア。

    API 層とエンジンが同じインスタンスを共有する前提で、
    ロックの責務はすべてこのクラス側で持つ。
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._tasks: Dict[str, Task] = {}
        self._events: Dict[str, Event] = {}
        self._users: Dict[str, User] = {}
        self._notifications: Dict[str, Notification] = {}

    # ------------------------------------------------------------------
    # 内部ユーティリティ
    # ------------------------------------------------------------------
    @staticmethod
    def _get(table: Dict[str, ModelT], entity: str, key: str) -> ModelT:
        try:
            return table[key]
        except KeyError:
            raise NotFoundError(entity, key) from None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def list_tasks(self, user_id: str) -> List[Task]:
        with self._lock.read():
            return [_copy(t) for t in self._tasks.values() if t.user_id == user_id]

    def get_task(self, task_id: str) -> Task:
        with self._lock.read():
            return _copy(self._get(self._tasks, "task", task_id))

    def create_task(self, task: Task) -> Task:
        stored = task.model_copy(update={"id": task.id or new_id()}, deep=True)
        with self._lock.write():
            self._tasks[stored.id] = stored
        return _copy(stored)

    def update_task(self, task_id: str, task: Task) -> Task:
        stored = task.model_copy(update={"id": task_id}, deep=True)
        with self._lock.write():
            self._get(self._tasks, "task", task_id)
            self._tasks[task_id] = stored
        return _copy(stored)

    def delete_task(self, task_id: str) -> None:
        with self._lock.write():
            self._get(self._tasks, "task", task_id)
            del self._tasks[task_id]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def list_events(self, user_id: str) -> List[Event]:
        with self._lock.read():
            return [_copy(e) for e in self._events.values() if e.user_id == user_id]

    def get_event(self, event_id: str) -> Event:
        with self._lock.read():
            return _copy(self._get(self._events, "event", event_id))

    def create_event(self, event: Event) -> Event:
        stored = event.model_copy(update={"id": event.id or new_id()}, deep=True)
        with self._lock.write():
            self._events[stored.id] = stored
        return _copy(stored)

    def update_event(self, event_id: str, event: Event) -> Event:
        stored = event.model_copy(update={"id": event_id}, deep=True)
        with self._lock.write():
            self._get(self._events, "event", event_id)
            self._events[event_id] = stored
        return _copy(stored)

    def delete_event(self, event_id: str) -> None:
        with self._lock.write():
            self._get(self._events, "event", event_id)
            del self._events[event_id]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_user(self, user_id: str) -> User:
        with self._lock.read():
            return _copy(self._get(self._users, "user", user_id))

    def get_user_by_email(self, email: str) -> User:
        with self._lock.read():
            for user in self._users.values():
                if user.email == email:
                    return _copy(user)
        raise NotFoundError("user", email)

    def get_user_by_verification_token(self, token: str) -> User:
        if token:
            with self._lock.read():
                for user in self._users.values():
                    if user.verification_token == token:
                        return _copy(user)
        raise NotFoundError("user", "verification token")

    def create_user(self, user: User) -> User:
        stored = user.model_copy(update={"id": user.id or new_id()}, deep=True)
        with self._lock.write():
            self._users[stored.id] = stored
        return _copy(stored)

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        # 空文字・None のフィールドは更新しない
        changes = {key: value for key, value in (("name", name), ("email", email)) if value}
        with self._lock.write():
            existing = self._get(self._users, "user", user_id)
            updated = existing.model_copy(update=changes)
            self._users[user_id] = updated
        return _copy(updated)

    def update_user_password(self, user_id: str, password_hash: str) -> User:
        with self._lock.write():
            existing = self._get(self._users, "user", user_id)
            if password_hash:
                existing = existing.model_copy(update={"password_hash": password_hash})
                self._users[user_id] = existing
        return _copy(existing)

    def mark_user_verified(self, user_id: str) -> None:
        with self._lock.write():
            existing = self._get(self._users, "user", user_id)
            self._users[user_id] = existing.model_copy(
                update={"is_verified": True, "verification_token": None}
            )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def list_notifications(self, user_id: str) -> List[Notification]:
        with self._lock.read():
            items = [_copy(n) for n in self._notifications.values() if n.user_id == user_id]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items

    def find_notification(self, reference_id: str, kind: NotificationKind) -> Notification:
        kind = notification_kind(kind)
        with self._lock.read():
            for notification in self._notifications.values():
                if notification.reference_id == reference_id and notification.kind == kind:
                    return _copy(notification)
        raise NotFoundError("notification", f"{kind.value}:{reference_id}")

    def create_notification(self, notification: Notification) -> Notification:
        stored = notification.model_copy(
            update={
                "id": notification.id or new_id(),
                "created_at": notification.created_at or normalize_now(None),
            },
            deep=True,
        )
        with self._lock.write():
            self._notifications[stored.id] = stored
        return _copy(stored)

    def mark_notification_read(
        self,
        notification_id: str,
        *,
        user_id: Optional[str] = None,
    ) -> None:
        with self._lock.write():
            existing = self._get(self._notifications, "notification", notification_id)
            # 他ユーザーの通知は存在しないものとして扱う
            if user_id is not None and existing.user_id != user_id:
                raise NotFoundError("notification", notification_id)
            self._notifications[notification_id] = existing.model_copy(update={"read": True})

    def mark_emailed(self, notification_id: str) -> None:
        with self._lock.write():
            existing = self._get(self._notifications, "notification", notification_id)
            if not existing.emailed:
                self._notifications[notification_id] = existing.model_copy(update={"emailed": True})

    def list_stale_unread(
        self,
        older_than: timedelta,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Notification]:
        cutoff = stale_cutoff(older_than, now)
        with self._lock.read():
            items = [
                _copy(n)
                for n in self._notifications.values()
                if not n.read
                and not n.emailed
                and n.created_at < cutoff
                and (user_id is None or n.user_id == user_id)
            ]
        items.sort(key=lambda n: n.created_at)
        return items

    # ------------------------------------------------------------------
    # Worker helpers
    # ------------------------------------------------------------------
    def list_due_work_items(
        self,
        kind: WorkItemKind,
        within: timedelta,
        *,
        now: Optional[datetime] = None,
    ) -> List[WorkItem]:
        start, end = due_window(kind, within, now)
        with self._lock.read():
            if kind is WorkItemKind.TASK:
                candidates: List[WorkItem] = [t for t in self._tasks.values() if not t.completed]
            else:
                candidates = list(self._events.values())
            items = [_copy(item) for item in candidates if start < item.deadline <= end]
        items.sort(key=lambda item: item.deadline)
        return items
