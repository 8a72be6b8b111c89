# backend/studybuddy/api/notifications.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from studybuddy.engine.schemas import DeliveryResult
from studybuddy.engine.service import NotificationEngine
from studybuddy.store.errors import NotFoundError, StoreError
from studybuddy.store.gateway import PersistenceGateway
from studybuddy.store.schemas import Notification

from .deps import get_current_user_id, get_engine, get_store, store_unavailable

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get(
    "",
    response_model=List[Notification],
    summary="List notifications of the current user (newest first)",
)
def list_notifications(
    user_id: str = Depends(get_current_user_id),
    store: PersistenceGateway = Depends(get_store),
) -> List[Notification]:
    try:
        return store.list_notifications(user_id)
    except StoreError as exc:
        raise store_unavailable(exc) from exc


@router.post(
    "/{notification_id}/read",
    summary="Mark a notification as read",
)
def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    store: PersistenceGateway = Depends(get_store),
) -> dict:
    # 他ユーザーの通知は 404（存在を明かさない）
    try:
        store.mark_notification_read(notification_id, user_id=user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreError as exc:
        raise store_unavailable(exc) from exc
    return {"status": "ok"}


@router.post(
    "/check-email-fallback",
    response_model=DeliveryResult,
    summary="Email the current user's stale unread notifications now",
)
def check_email_fallback(
    user_id: str = Depends(get_current_user_id),
    store: PersistenceGateway = Depends(get_store),
    engine: NotificationEngine = Depends(get_engine),
) -> DeliveryResult:
    """
    アプリのバックグラウンドフェッチから呼ばれるメールフォールバック。

    エンジンの未読スキャンを呼び出しユーザーに絞って即時実行する。
    """
    try:
        store.get_user(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
    except StoreError as exc:
        raise store_unavailable(exc) from exc

    result = engine.run_stale_unread_scan(user_id=user_id)
    if result.error is not None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to check unread notifications: {result.error}",
        )
    return result
