# backend/studybuddy/engine/schemas.py

"""
エンジンの各スキャン結果のスキーマ定義。

テストや「今すぐチェック」エンドポイントが件数を確認するために使う。
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from studybuddy.store.schemas import WorkItemKind


class ScanResult(BaseModel):
    """
    締め切りスキャン（Task / Event）1 回分の結果。
    """

    kind: WorkItemKind = Field(..., description="スキャン対象の種別")
    scanned: int = Field(0, ge=0, description="ウィンドウ内に見つかったアイテム数")
    created: List[str] = Field(
        default_factory=list,
        description="新たに作成した通知の ID 一覧",
    )
    already_notified: int = Field(0, ge=0, description="既に通知済みでスキップした件数")
    failed: int = Field(0, ge=0, description="アイテム単位で失敗した件数")
    error: Optional[str] = Field(
        None,
        description="ステップ全体が失敗した場合のエラーメッセージ（成功時は None）。",
    )


class DeliveryResult(BaseModel):
    """
    未読通知のメール送信スキャン 1 回分の結果。
    """

    scanned: int = Field(0, ge=0, description="対象になった未読通知の件数")
    emailed: List[str] = Field(
        default_factory=list,
        description="メール送信に成功した通知の ID 一覧",
    )
    skipped_unverified: int = Field(
        0,
        ge=0,
        description="未認証ユーザーのため送信せず emailed にした件数",
    )
    missing_user: int = Field(0, ge=0, description="所有ユーザーが見つからずスキップした件数")
    failed: int = Field(0, ge=0, description="送信または更新に失敗した件数（次回再試行）")
    error: Optional[str] = Field(
        None,
        description="ステップ全体が失敗した場合のエラーメッセージ（成功時は None）。",
    )


class CycleReport(BaseModel):
    """
    1 サイクル（Task → Event → 未読）分の結果。
    """

    started_at: datetime = Field(..., description="サイクル開始時刻（UTC）")
    finished_at: datetime = Field(..., description="サイクル終了時刻（UTC）")
    tasks: ScanResult
    events: ScanResult
    stale: DeliveryResult
