# backend/studybuddy/store/factory.py

"""
PersistenceGateway の生成。

プロセス起動時に 1 回だけ呼び出し、生成したインスタンスを
エンジンと API 層の両方へ明示的に渡す（グローバルには保持しない）。
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import StoreConfig, get_store_config
from .gateway import PersistenceGateway
from .memory import InMemoryStore
from .mongo import MongoStore

logger = logging.getLogger(__name__)


def build_store(config: Optional[StoreConfig] = None) -> PersistenceGateway:
    """
    設定に応じてバックエンドを選択して生成する。

    - MONGO_URI あり → MongoStore（接続失敗時は StoreInitError）
    - MONGO_URI なし → InMemoryStore
    """
    config = config or get_store_config()
    if config.uses_mongo:
        return MongoStore.connect(
            config.mongo_uri,
            config.db_name,
            timeout_seconds=config.timeout_seconds,
        )

    logger.info("MONGO_URI is not set; using in-memory store")
    return InMemoryStore()
