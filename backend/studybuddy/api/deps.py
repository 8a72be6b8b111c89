# backend/studybuddy/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from studybuddy.engine.service import NotificationEngine
from studybuddy.store.errors import StoreError
from studybuddy.store.gateway import PersistenceGateway


# Dependency providers
# - create_app() が app.state に載せたインスタンスを返す
# - テスト時に FastAPI dependency_overrides で差し替え可能にする
def get_store(request: Request) -> PersistenceGateway:
    return request.app.state.store


def get_engine(request: Request) -> NotificationEngine:
    return request.app.state.engine


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    認証レイヤが付与する X-User-Id ヘッダから呼び出しユーザーを取り出す。
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id


def store_unavailable(exc: StoreError) -> HTTPException:
    # API層の責務：ストアの例外をHTTPに変換（内部事情はdetailに閉じ込める）
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Store unavailable: {exc}",
    )
