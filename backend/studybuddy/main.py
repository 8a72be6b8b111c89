# backend/studybuddy/main.py

"""
バックエンドアプリケーションのエントリーポイント。

- /api/health ヘルスチェック
- /api/notifications 通知一覧・既読化・メールフォールバック
- /verify-email メールアドレス認証
- ENGINE_ENABLED=true の場合、アプリの起動・終了に合わせてエンジンを start / stop する
- 終了時にストアが close() を持っていれば呼ぶ（MongoDB クライアントの解放）

起動例:
    uvicorn --factory studybuddy.main:create_app
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from studybuddy.api.notifications import router as notifications_router
from studybuddy.api.users import router as users_router
from studybuddy.engine.config import EngineSettings, get_engine_settings
from studybuddy.engine.service import NotificationEngine
from studybuddy.notifications.factory import build_notifier
from studybuddy.notifications.service import Notifier
from studybuddy.store.factory import build_store
from studybuddy.store.gateway import PersistenceGateway


def create_app(
    *,
    store: Optional[PersistenceGateway] = None,
    notifier: Optional[Notifier] = None,
    settings: Optional[EngineSettings] = None,
) -> FastAPI:
    """
    FastAPI アプリケーションファクトリ。

    ストアはここで 1 回だけ生成し、API 層とエンジンの両方に同じものを渡す。
    MONGO_URI に接続できない場合は StoreInitError がそのまま送出され、起動が止まる。
    """
    store = store if store is not None else build_store()
    notifier = notifier if notifier is not None else build_notifier()
    settings = settings or get_engine_settings()
    engine = NotificationEngine(store, notifier, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        handle = engine.start() if settings.enabled else None
        try:
            yield
        finally:
            # エンジンを先に止めてからストアを閉じる
            if handle is not None:
                handle.stop(wait=True)
            close = getattr(store, "close", None)
            if callable(close):
                close()

    app = FastAPI(title="StudyBuddy Backend", lifespan=lifespan)
    app.state.store = store
    app.state.engine = engine

    # ルーター登録
    app.include_router(notifications_router)
    app.include_router(users_router)

    @app.get("/api/health", tags=["health"])
    def health_check() -> dict:
        """
        簡易ヘルスチェックエンドポイント。
        モニタリングや動作確認用。
        """
        return {"status": "ok", "engine_running": engine.is_running}

    return app
