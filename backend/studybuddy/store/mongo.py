# backend/studybuddy/store/mongo.py

"""
MongoDB による PersistenceGateway 実装。

- 1 論理操作につき 1 ラウンドトリップ。pymongo.timeout() で上限時間を設ける
- ドキュメントが見つからない場合は InMemoryStore と同じ NotFoundError
- タイムアウト・接続エラーは TransientStoreError（次回のティックで自然に再試行）
- エンティティ ID はそのまま _id に格納する

日時は naive な UTC として保存し、読み出し時にスキーマ側で UTC に戻す。
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

import pymongo
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError, WTimeoutError

from .errors import NotFoundError, StoreError, StoreInitError, TransientStoreError
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
    to_utc,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=StoreModel)

DEFAULT_DB_NAME = "studybuddy"
DEFAULT_TIMEOUT_SECONDS = 5.0


def _bson_time(value: datetime) -> datetime:
    return to_utc(value).replace(tzinfo=None)


def _to_document(model: StoreModel) -> Dict[str, Any]:
    doc = model.to_document()
    doc["_id"] = doc.pop("id")
    return {
        key: _bson_time(value) if isinstance(value, datetime) else value
        for key, value in doc.items()
    }


def _from_document(model_cls: Type[ModelT], doc: Dict[str, Any]) -> ModelT:
    data = dict(doc)
    object_id = data.pop("_id", None)
    if not data.get("id"):
        data["id"] = str(object_id)
    return model_cls.model_validate(data)


class MongoStore:
    """
    MongoDB バックエンド。

    コレクション: tasks / events / users / notifications
    """

    def __init__(
        self,
        database: Database,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._db = database
        self._timeout = float(timeout_seconds)
        self._tasks: Collection = database["tasks"]
        self._events: Collection = database["events"]
        self._users: Collection = database["users"]
        self._notifications: Collection = database["notifications"]

    @classmethod
    def connect(
        cls,
        uri: str,
        db_name: str = DEFAULT_DB_NAME,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> "MongoStore":
        """
        MongoDB に接続し、疎通確認とインデックス作成を行う。

        :raises StoreInitError: 接続できなかった場合（起動を中止すべき致命的エラー）。
        """
        try:
            client: MongoClient = MongoClient(
                uri,
                serverSelectionTimeoutMS=int(timeout_seconds * 1000),
            )
        except PyMongoError as exc:
            raise StoreInitError(f"Invalid MongoDB configuration: {exc}") from exc

        try:
            with pymongo.timeout(timeout_seconds):
                client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            raise StoreInitError(f"Failed to connect to MongoDB: {exc}") from exc

        store = cls(client[db_name], timeout_seconds=timeout_seconds)
        try:
            store.ensure_indexes()
        except StoreError as exc:
            client.close()
            raise StoreInitError(f"Failed to prepare MongoDB indexes: {exc}") from exc

        logger.info("Connected to MongoDB database '%s'", db_name)
        return store

    def close(self) -> None:
        self._db.client.close()

    # ------------------------------------------------------------------
    # 内部ユーティリティ
    # ------------------------------------------------------------------
    @contextmanager
    def _round_trip(self, operation: str) -> Iterator[None]:
        """
        1 論理操作分のタイムアウトとエラー変換を行う。
        """
        try:
            with pymongo.timeout(self._timeout):
                yield
        except (ConnectionFailure, ExecutionTimeout, WTimeoutError) as exc:
            raise TransientStoreError(f"MongoDB {operation} failed: {exc}") from exc
        except PyMongoError as exc:
            if exc.timeout:
                raise TransientStoreError(f"MongoDB {operation} timed out: {exc}") from exc
            raise StoreError(f"MongoDB {operation} failed: {exc}") from exc

    def _find_many(
        self,
        collection: Collection,
        model_cls: Type[ModelT],
        query: Dict[str, Any],
        *,
        sort: Optional[List[tuple]] = None,
    ) -> List[ModelT]:
        with self._round_trip(f"find on {collection.name}"):
            cursor = collection.find(query)
            if sort:
                cursor = cursor.sort(sort)
            docs = list(cursor)

        items: List[ModelT] = []
        for doc in docs:
            try:
                items.append(_from_document(model_cls, doc))
            except ValidationError as exc:
                # 壊れたドキュメントは 1 件単位でスキップする
                logger.warning(
                    "Skipping malformed %s document %s: %s",
                    collection.name,
                    doc.get("_id"),
                    exc,
                )
        return items

    def _find_one(
        self,
        collection: Collection,
        model_cls: Type[ModelT],
        query: Dict[str, Any],
        *,
        entity: str,
        key: str,
    ) -> ModelT:
        with self._round_trip(f"find_one on {collection.name}"):
            doc = collection.find_one(query)
        if doc is None:
            raise NotFoundError(entity, key)
        try:
            return _from_document(model_cls, doc)
        except ValidationError as exc:
            raise StoreError(f"Malformed {entity} document {key}: {exc}") from exc

    def _upsert(self, collection: Collection, model: ModelT) -> ModelT:
        doc = _to_document(model)
        with self._round_trip(f"replace_one on {collection.name}"):
            collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)
        return model

    def _replace_existing(
        self,
        collection: Collection,
        model: ModelT,
        *,
        entity: str,
    ) -> ModelT:
        doc = _to_document(model)
        with self._round_trip(f"replace_one on {collection.name}"):
            result = collection.replace_one({"_id": doc["_id"]}, doc)
        if result.matched_count == 0:
            raise NotFoundError(entity, doc["_id"])
        return model

    def _delete(self, collection: Collection, key: str, *, entity: str) -> None:
        with self._round_trip(f"delete_one on {collection.name}"):
            result = collection.delete_one({"_id": key})
        if result.deleted_count == 0:
            raise NotFoundError(entity, key)

    def _set_fields(
        self,
        collection: Collection,
        key: str,
        fields: Dict[str, Any],
        *,
        entity: str,
    ) -> None:
        with self._round_trip(f"update_one on {collection.name}"):
            result = collection.update_one({"_id": key}, {"$set": fields})
        if result.matched_count == 0:
            raise NotFoundError(entity, key)

    def ensure_indexes(self) -> None:
        """クエリで使うインデックスを作成する（冪等）。"""
        with self._round_trip("create_index"):
            for collection in (self._tasks, self._events, self._notifications):
                collection.create_index([("userId", ASCENDING)])
            self._tasks.create_index([("completed", ASCENDING), ("dueAt", ASCENDING)])
            self._events.create_index([("startsAt", ASCENDING)])
            self._users.create_index([("email", ASCENDING)])
            self._users.create_index([("verificationToken", ASCENDING)])
            # 重複排除キー。一意制約は付けない（DESIGN.md の Open Question 参照）
            self._notifications.create_index([("referenceId", ASCENDING), ("kind", ASCENDING)])
            self._notifications.create_index(
                [("read", ASCENDING), ("emailed", ASCENDING), ("createdAt", ASCENDING)]
            )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def list_tasks(self, user_id: str) -> List[Task]:
        return self._find_many(self._tasks, Task, {"userId": user_id})

    def get_task(self, task_id: str) -> Task:
        return self._find_one(self._tasks, Task, {"_id": task_id}, entity="task", key=task_id)

    def create_task(self, task: Task) -> Task:
        return self._upsert(self._tasks, task.model_copy(update={"id": task.id or new_id()}))

    def update_task(self, task_id: str, task: Task) -> Task:
        return self._replace_existing(
            self._tasks,
            task.model_copy(update={"id": task_id}),
            entity="task",
        )

    def delete_task(self, task_id: str) -> None:
        self._delete(self._tasks, task_id, entity="task")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def list_events(self, user_id: str) -> List[Event]:
        return self._find_many(self._events, Event, {"userId": user_id})

    def get_event(self, event_id: str) -> Event:
        return self._find_one(self._events, Event, {"_id": event_id}, entity="event", key=event_id)

    def create_event(self, event: Event) -> Event:
        return self._upsert(self._events, event.model_copy(update={"id": event.id or new_id()}))

    def update_event(self, event_id: str, event: Event) -> Event:
        return self._replace_existing(
            self._events,
            event.model_copy(update={"id": event_id}),
            entity="event",
        )

    def delete_event(self, event_id: str) -> None:
        self._delete(self._events, event_id, entity="event")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_user(self, user_id: str) -> User:
        return self._find_one(self._users, User, {"_id": user_id}, entity="user", key=user_id)

    def get_user_by_email(self, email: str) -> User:
        return self._find_one(self._users, User, {"email": email}, entity="user", key=email)

    def get_user_by_verification_token(self, token: str) -> User:
        if not token:
            raise NotFoundError("user", "verification token")
        return self._find_one(
            self._users,
            User,
            {"verificationToken": token},
            entity="user",
            key="verification token",
        )

    def create_user(self, user: User) -> User:
        return self._upsert(self._users, user.model_copy(update={"id": user.id or new_id()}))

    def _update_user_fields(self, user_id: str, fields: Dict[str, Any]) -> User:
        if not fields:
            return self.get_user(user_id)
        with self._round_trip("find_one_and_update on users"):
            doc = self._users.find_one_and_update(
                {"_id": user_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError("user", user_id)
        try:
            return _from_document(User, doc)
        except ValidationError as exc:
            raise StoreError(f"Malformed user document {user_id}: {exc}") from exc

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        fields = {key: value for key, value in (("name", name), ("email", email)) if value}
        return self._update_user_fields(user_id, fields)

    def update_user_password(self, user_id: str, password_hash: str) -> User:
        fields = {"passwordHash": password_hash} if password_hash else {}
        return self._update_user_fields(user_id, fields)

    def mark_user_verified(self, user_id: str) -> None:
        self._set_fields(
            self._users,
            user_id,
            {"isVerified": True, "verificationToken": None},
            entity="user",
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def list_notifications(self, user_id: str) -> List[Notification]:
        return self._find_many(
            self._notifications,
            Notification,
            {"userId": user_id},
            sort=[("createdAt", DESCENDING)],
        )

    def find_notification(self, reference_id: str, kind: NotificationKind) -> Notification:
        kind_value = notification_kind(kind).value
        return self._find_one(
            self._notifications,
            Notification,
            {"referenceId": reference_id, "kind": kind_value},
            entity="notification",
            key=f"{kind_value}:{reference_id}",
        )

    def create_notification(self, notification: Notification) -> Notification:
        stored = notification.model_copy(
            update={
                "id": notification.id or new_id(),
                "created_at": notification.created_at or normalize_now(None),
            }
        )
        return self._upsert(self._notifications, stored)

    def mark_notification_read(
        self,
        notification_id: str,
        *,
        user_id: Optional[str] = None,
    ) -> None:
        query: Dict[str, Any] = {"_id": notification_id}
        if user_id is not None:
            # 他ユーザーの通知は存在しないものとして扱う
            query["userId"] = user_id
        with self._round_trip("update_one on notifications"):
            result = self._notifications.update_one(query, {"$set": {"read": True}})
        if result.matched_count == 0:
            raise NotFoundError("notification", notification_id)

    def mark_emailed(self, notification_id: str) -> None:
        # 既に True でも matched_count は 1 なので冪等
        self._set_fields(self._notifications, notification_id, {"emailed": True}, entity="notification")

    def list_stale_unread(
        self,
        older_than: timedelta,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Notification]:
        cutoff = stale_cutoff(older_than, now)
        query: Dict[str, Any] = {
            "read": False,
            "emailed": False,
            "createdAt": {"$lt": _bson_time(cutoff)},
        }
        if user_id is not None:
            query["userId"] = user_id
        return self._find_many(
            self._notifications,
            Notification,
            query,
            sort=[("createdAt", ASCENDING)],
        )

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
        window = {"$gt": _bson_time(start), "$lte": _bson_time(end)}

        if kind is WorkItemKind.TASK:
            return list(
                self._find_many(
                    self._tasks,
                    Task,
                    {"completed": False, "dueAt": window},
                    sort=[("dueAt", ASCENDING)],
                )
            )
        return list(
            self._find_many(
                self._events,
                Event,
                {"startsAt": window},
                sort=[("startsAt", ASCENDING)],
            )
        )
