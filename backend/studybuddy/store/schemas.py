# backend/studybuddy/store/schemas.py

"""
ストア層で扱うエンティティのスキーマ定義。

- Task / Event: 締め切り（deadline）を持つ作業アイテム
- Notification: エンジンが生成する通知レコード
- User: メール送信先の解決に使うユーザー

日時はすべて「書き込み時に 1 つの UTC タイムスタンプへ正規化」する。
旧クライアントが送ってくる日付文字列＋時刻文字列の組（dueDate / dueTime など）は
バリデーション時に結合し、クエリ時に再パースすることはない。

ミリ秒精度に丸めるのは BSON の datetime 精度に合わせるため。
これによりインメモリ / MongoDB の両バックエンドで同じ値が保持される。
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

LEGACY_DATETIME_FORMAT = "%Y-%m-%d %H:%M"


def new_id() -> str:
    """エンティティ ID（不透明な文字列）を採番する。"""
    return str(uuid.uuid4())


def to_utc(value: datetime) -> datetime:
    """
    datetime を UTC・ミリ秒精度に正規化する。

    naive な datetime は UTC とみなす。
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    return to_utc(datetime.now(timezone.utc))


def combine_date_time(date_text: Any, time_text: Any) -> datetime:
    """
    "YYYY-MM-DD" と "HH:MM" の組を UTC の datetime に結合する。

    :raises ValueError: どちらかが欠けている、または書式が不正な場合。
    """
    if not isinstance(date_text, str) or not isinstance(time_text, str):
        raise ValueError(f"date and time text are both required: {date_text!r} {time_text!r}")
    try:
        parsed = datetime.strptime(f"{date_text.strip()} {time_text.strip()}", LEGACY_DATETIME_FORMAT)
    except ValueError as exc:
        raise ValueError(f"invalid date/time text: {date_text!r} {time_text!r}") from exc
    return parsed.replace(tzinfo=timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]


def _pop_legacy(data: dict, *keys: str) -> Any:
    """snake_case / camelCase どちらのキーでも旧フィールドを取り出す。"""
    value = None
    for key in keys:
        if key in data:
            found = data.pop(key)
            if value is None:
                value = found
    return value


def _has_any(data: dict, *keys: str) -> bool:
    return any(data.get(key) is not None for key in keys)


class WorkItemKind(str, Enum):
    """締め切りスキャン対象となる作業アイテムの種別。"""

    TASK = "task"
    EVENT = "event"


class NotificationKind(str, Enum):
    """
    通知の種別。

    (reference_id, kind) の組が重複排除キーになる。
    """

    TASK_DUE = "TASK_DUE"
    EVENT_START = "EVENT_START"


class StoreModel(BaseModel):
    """
    ストアに保存されるモデルの共通基底。

    JSON / BSON 上のフィールド名は camelCase（userId, createdAt など）、
    Python 側の属性名は snake_case。
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """エイリアス（camelCase）で辞書化する。Enum は値に展開する。"""
        return {
            key: value.value if isinstance(value, Enum) else value
            for key, value in self.model_dump(by_alias=True).items()
        }


class Task(StoreModel):
    """締め切りを持つ課題。"""

    id: Optional[str] = Field(None, description="タスク ID。未指定ならストアが採番する。")
    user_id: str = Field(..., description="所有ユーザー ID")
    title: str = Field(..., description="タスク名")
    description: str = ""
    course_id: Optional[str] = None
    due_at: UtcDatetime = Field(..., description="締め切り（UTC）")
    completed: bool = False
    has_reminder: bool = False
    completed_at: Optional[UtcDatetime] = None

    @model_validator(mode="before")
    @classmethod
    def _combine_legacy_due(cls, data: Any) -> Any:
        # 旧形式: dueDate="2024-05-01", dueTime="14:30"
        if not isinstance(data, dict):
            return data
        if not _has_any(data, "due_date", "dueDate", "due_time", "dueTime"):
            return data

        normalized = dict(data)
        date_text = _pop_legacy(normalized, "due_date", "dueDate")
        time_text = _pop_legacy(normalized, "due_time", "dueTime")
        if _has_any(normalized, "due_at", "dueAt"):
            return normalized
        normalized["due_at"] = combine_date_time(date_text, time_text)
        return normalized

    @property
    def deadline(self) -> datetime:
        return self.due_at


class Event(StoreModel):
    """授業・試験・勉強会などの予定。開始時刻が締め切り扱いになる。"""

    id: Optional[str] = Field(None, description="イベント ID。未指定ならストアが採番する。")
    user_id: str = Field(..., description="所有ユーザー ID")
    title: str = Field(..., description="イベント名")
    description: str = ""
    course_id: Optional[str] = None
    kind: str = Field("class", description="class / exam / study などの種別タグ")
    starts_at: UtcDatetime = Field(..., description="開始時刻（UTC）")
    ends_at: Optional[UtcDatetime] = Field(None, description="終了時刻（UTC）")

    @model_validator(mode="before")
    @classmethod
    def _combine_legacy_schedule(cls, data: Any) -> Any:
        # 旧形式: date="2024-05-01", startTime="09:00", endTime="10:30"
        if not isinstance(data, dict):
            return data
        if not _has_any(data, "date", "start_time", "startTime", "end_time", "endTime"):
            return data

        normalized = dict(data)
        date_text = _pop_legacy(normalized, "date")
        start_text = _pop_legacy(normalized, "start_time", "startTime")
        end_text = _pop_legacy(normalized, "end_time", "endTime")
        if not _has_any(normalized, "starts_at", "startsAt"):
            normalized["starts_at"] = combine_date_time(date_text, start_text)
        if end_text and not _has_any(normalized, "ends_at", "endsAt"):
            normalized["ends_at"] = combine_date_time(date_text, end_text)
        return normalized

    @model_validator(mode="after")
    def _check_range(self) -> "Event":
        if self.ends_at is not None and self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be earlier than starts_at")
        return self

    @property
    def deadline(self) -> datetime:
        return self.starts_at


WorkItem = Union[Task, Event]


class User(StoreModel):
    """
    ユーザー。

    password_hash はこの層では不透明な文字列として扱うだけ。
    メール送信対象になるのは is_verified=True のユーザーのみ。
    """

    id: Optional[str] = None
    name: str
    email: str
    password_hash: str = ""
    is_verified: bool = False
    verification_token: Optional[str] = None


class Notification(StoreModel):
    """
    エンジンが生成する通知レコード。

    - (reference_id, kind) ごとに高々 1 件
    - emailed は一度 True になったら戻らない（重複送信防止用のフラグ）
    """

    id: Optional[str] = Field(None, description="通知 ID。未指定ならストアが採番する。")
    user_id: str = Field(..., description="通知先ユーザー ID")
    message: str = Field(..., description="通知本文")
    kind: NotificationKind = Field(..., description="通知種別（TASK_DUE / EVENT_START）")
    reference_id: str = Field(..., description="通知のもとになった Task / Event の ID")
    read: bool = False
    emailed: bool = False
    created_at: Optional[UtcDatetime] = Field(
        None,
        description="生成時刻（UTC）。未指定ならストアが設定する。",
    )
