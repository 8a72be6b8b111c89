# backend/studybuddy/store/gateway.py

"""
永続化ゲートウェイのインターフェースと、両バックエンド共通の入力検証。

実装:
- InMemoryStore: プロセス内のマップ（単一の reader/writer ロックで保護）
- MongoStore: MongoDB（1 論理操作 = 1 ラウンドトリップ、タイムアウト付き）

両実装は同じ入力に対して同じ結果を返さなければならない。
その保証は tests/test_store_conformance.py の共通スイートで機械的に確認する。

締め切りウィンドウの境界ポリシー（両実装共通）:
    now < deadline <= now + within
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Tuple

from .errors import StoreValidationError
from .schemas import Event, Notification, NotificationKind, Task, User, WorkItem, WorkItemKind, to_utc, utc_now


class PersistenceGateway(Protocol):
    """
    Task / Event / User / Notification を扱う永続化インターフェース。

    見つからない場合は NotFoundError、入力不正は StoreValidationError、
    一時的な障害は TransientStoreError を投げる。
    """

    # --- Tasks -------------------------------------------------------------
    def list_tasks(self, user_id: str) -> List[Task]: ...  # pragma: no cover - Protocol

    def get_task(self, task_id: str) -> Task: ...  # pragma: no cover - Protocol

    def create_task(self, task: Task) -> Task: ...  # pragma: no cover - Protocol

    def update_task(self, task_id: str, task: Task) -> Task: ...  # pragma: no cover - Protocol

    def delete_task(self, task_id: str) -> None: ...  # pragma: no cover - Protocol

    # --- Events ------------------------------------------------------------
    def list_events(self, user_id: str) -> List[Event]: ...  # pragma: no cover - Protocol

    def get_event(self, event_id: str) -> Event: ...  # pragma: no cover - Protocol

    def create_event(self, event: Event) -> Event: ...  # pragma: no cover - Protocol

    def update_event(self, event_id: str, event: Event) -> Event: ...  # pragma: no cover - Protocol

    def delete_event(self, event_id: str) -> None: ...  # pragma: no cover - Protocol

    # --- Users -------------------------------------------------------------
    def get_user(self, user_id: str) -> User: ...  # pragma: no cover - Protocol

    def get_user_by_email(self, email: str) -> User: ...  # pragma: no cover - Protocol

    def get_user_by_verification_token(self, token: str) -> User: ...  # pragma: no cover - Protocol

    def create_user(self, user: User) -> User: ...  # pragma: no cover - Protocol

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User: ...  # pragma: no cover - Protocol

    def update_user_password(self, user_id: str, password_hash: str) -> User: ...  # pragma: no cover - Protocol

    def mark_user_verified(self, user_id: str) -> None: ...  # pragma: no cover - Protocol

    # --- Notifications -----------------------------------------------------
    def list_notifications(self, user_id: str) -> List[Notification]: ...  # pragma: no cover - Protocol

    def find_notification(self, reference_id: str, kind: NotificationKind) -> Notification: ...  # pragma: no cover - Protocol

    def create_notification(self, notification: Notification) -> Notification: ...  # pragma: no cover - Protocol

    def mark_notification_read(
        self,
        notification_id: str,
        *,
        user_id: Optional[str] = None,
    ) -> None: ...  # pragma: no cover - Protocol

    def mark_emailed(self, notification_id: str) -> None: ...  # pragma: no cover - Protocol

    def list_stale_unread(
        self,
        older_than: timedelta,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Notification]: ...  # pragma: no cover - Protocol

    # --- Worker helpers ----------------------------------------------------
    def list_due_work_items(
        self,
        kind: WorkItemKind,
        within: timedelta,
        *,
        now: Optional[datetime] = None,
    ) -> List[WorkItem]: ...  # pragma: no cover - Protocol


def normalize_now(now: Optional[datetime]) -> datetime:
    """
    基準時刻を正規化する。

    - None の場合は現在時刻（UTC）
    - naive な datetime は UTC とみなす
    """
    if now is None:
        return utc_now()
    return to_utc(now)


def due_window(
    kind: WorkItemKind,
    within: timedelta,
    now: Optional[datetime],
) -> Tuple[datetime, datetime]:
    """
    締め切りスキャンの (下限, 上限) を返す。下限は含まず、上限は含む。

    :raises StoreValidationError: kind / within が不正な場合。
    """
    if not isinstance(kind, WorkItemKind):
        raise StoreValidationError(f"unsupported work item kind: {kind!r}")
    if not isinstance(within, timedelta):
        raise StoreValidationError(f"within must be a timedelta, got {type(within).__name__}")
    if within <= timedelta(0):
        raise StoreValidationError(f"within must be positive, got {within}")

    start = normalize_now(now)
    return start, start + within


def stale_cutoff(older_than: timedelta, now: Optional[datetime]) -> datetime:
    """
    未読スキャンのカットオフ時刻を返す。created_at がこれより前（未満）なら対象。

    :raises StoreValidationError: older_than が不正な場合。
    """
    if not isinstance(older_than, timedelta):
        raise StoreValidationError(
            f"older_than must be a timedelta, got {type(older_than).__name__}"
        )
    if older_than < timedelta(0):
        raise StoreValidationError(f"older_than must not be negative, got {older_than}")
    return normalize_now(now) - older_than


def notification_kind(kind: NotificationKind) -> NotificationKind:
    """
    通知種別を検証して NotificationKind に揃える。値の文字列（"TASK_DUE" など）も受け付ける。

    :raises StoreValidationError: 未知の種別の場合。
    """
    try:
        return NotificationKind(kind)
    except ValueError:
        raise StoreValidationError(f"unsupported notification kind: {kind!r}") from None
