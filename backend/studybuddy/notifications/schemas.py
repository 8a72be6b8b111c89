# backend/studybuddy/notifications/schemas.py

"""
メール送信 1 件分のスキーマ定義。

Notifier の send(to, subject, body) に渡される値をまとめたもので、
送信ログや HTTP リレーへのペイロード生成に使う。

※ パスワードハッシュや認証トークンなどの機密情報は含めないこと。
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class EmailMessage(BaseModel):
    """
    送信するメール 1 件分の情報。

    body はプレーンテキスト想定。
    """

    to: str = Field(
        ...,
        description="宛先メールアドレス。",
    )
    subject: str = Field(
        ...,
        description="件名。",
    )
    body: str = Field(
        ...,
        description="本文。プレーンテキスト想定。",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="メッセージ生成時刻（UTC）。",
    )

    def to_payload(self) -> dict:
        """HTTP メールリレー向けの JSON ペイロード。"""
        return {"to": self.to, "subject": self.subject, "text": self.body}
