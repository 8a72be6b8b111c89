# backend/studybuddy/api/users.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from studybuddy.store.errors import NotFoundError, StoreError
from studybuddy.store.gateway import PersistenceGateway

from .deps import get_store, store_unavailable

router = APIRouter(tags=["users"])


@router.get(
    "/verify-email",
    summary="Verify a user's email address with the token sent at signup",
)
def verify_email(
    token: Optional[str] = Query(None),
    store: PersistenceGateway = Depends(get_store),
) -> dict:
    """
    メール内リンクから呼ばれる認証エンドポイント（認証ヘッダ不要）。

    認証済みになったユーザーだけが未読通知のメール送信対象になる。
    """
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid token")

    try:
        user = store.get_user_by_verification_token(token)
        store.mark_user_verified(user.id)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired token",
        ) from exc
    except StoreError as exc:
        raise store_unavailable(exc) from exc

    return {"status": "verified", "message": "Your email has been successfully verified."}
