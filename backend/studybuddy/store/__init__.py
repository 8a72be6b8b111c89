"""
永続化ゲートウェイ（PersistenceGateway）と 2 つのバックエンド実装。

- schemas: Task / Event / User / Notification のスキーマ
- gateway: インターフェース定義と共通の入力検証
- memory: インメモリ実装
- mongo: MongoDB 実装
- factory: 設定に応じたバックエンドの生成
"""

from .errors import (
    NotFoundError,
    StoreError,
    StoreInitError,
    StoreValidationError,
    TransientStoreError,
)
from .gateway import PersistenceGateway
from .memory import InMemoryStore
from .mongo import MongoStore
from .schemas import Event, Notification, NotificationKind, Task, User, WorkItem, WorkItemKind

__all__ = [
    "Event",
    "InMemoryStore",
    "MongoStore",
    "NotFoundError",
    "Notification",
    "NotificationKind",
    "PersistenceGateway",
    "StoreError",
    "StoreInitError",
    "StoreValidationError",
    "Task",
    "TransientStoreError",
    "User",
    "WorkItem",
    "WorkItemKind",
]
