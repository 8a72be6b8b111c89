# backend/studybuddy/engine/factory.py

"""
NotificationEngine の組み立て。

ストア・Notifier・設定は呼び出し側から渡せる。
渡されなかったものだけ環境変数から生成する。
"""

from __future__ import annotations

from typing import Optional

from studybuddy.notifications.factory import build_notifier
from studybuddy.notifications.service import Notifier
from studybuddy.store.factory import build_store
from studybuddy.store.gateway import PersistenceGateway

from .config import EngineSettings, get_engine_settings
from .service import NotificationEngine


def build_engine(
    *,
    store: Optional[PersistenceGateway] = None,
    notifier: Optional[Notifier] = None,
    settings: Optional[EngineSettings] = None,
) -> NotificationEngine:
    """
    NotificationEngine を生成する。

    :raises StoreInitError: store 未指定で MONGO_URI に接続できなかった場合。
    """
    return NotificationEngine(
        store if store is not None else build_store(),
        notifier if notifier is not None else build_notifier(),
        settings=settings or get_engine_settings(),
    )
