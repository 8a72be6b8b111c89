# backend/studybuddy/engine/service.py

"""
締め切り通知エンジン本体。

1 サイクルの流れ:

    Idle --(tick)--> 締め切りタスク走査 --> 開始間近イベント走査 --> 未読通知のメール送信 --> Idle

- 同じ (reference_id, kind) の通知は 1 件しか作らない（作成前に find_notification で確認）
- 未読のまま stale_after を過ぎた通知は、所有ユーザーが認証済みならメール送信する
- 未認証ユーザーの通知は送信せずに emailed=True にする（毎サイクル再チェックしないため）
- 送信失敗時は emailed=False のまま残し、次のサイクルで再試行する

アイテム単位の失敗がスキャンを止めることはなく、ステップ単位の失敗が
サイクルを止めることもない。失敗はすべてログに残して吸収する。

定期実行には APScheduler の BackgroundScheduler を使い、
max_instances=1 でサイクルの重複実行を防ぐ。
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Optional, TypeVar

from apscheduler.schedulers.background import BackgroundScheduler

from studybuddy.notifications.service import Notifier
from studybuddy.store.errors import NotFoundError, StoreError
from studybuddy.store.gateway import PersistenceGateway
from studybuddy.store.schemas import (
    Notification,
    NotificationKind,
    WorkItem,
    WorkItemKind,
    utc_now,
)

from .config import EngineSettings
from .schemas import CycleReport, DeliveryResult, ScanResult

logger = logging.getLogger(__name__)

JOB_ID = "notification_engine_cycle"
EMAIL_SUBJECT = "You have an unread notification"

_NOTIFICATION_KIND = {
    WorkItemKind.TASK: NotificationKind.TASK_DUE,
    WorkItemKind.EVENT: NotificationKind.EVENT_START,
}

ResultT = TypeVar("ResultT")


class EngineHandle:
    """
    start() が返すハンドル。stop() でエンジンを停止する。
    """

    def __init__(self, engine: "NotificationEngine") -> None:
        self._engine = engine

    @property
    def running(self) -> bool:
        return self._engine.is_running

    def stop(self, *, wait: bool = True) -> None:
        self._engine.stop(wait=wait)


class NotificationEngine:
    """
    締め切り通知とメールフォールバックを担うバックグラウンドエンジン。

    - run_task_scan / run_event_scan / run_stale_unread_scan で各ステップを同期実行
    - run_cycle で 1 サイクル分を同期実行（テストはこれで決定的に 1 回だけ回す）
    - start / stop で定期実行を開始・停止
    """

    def __init__(
        self,
        store: PersistenceGateway,
        notifier: Notifier,
        *,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._settings = settings or EngineSettings()
        self._clock = clock or utc_now
        self._scheduler: Optional[BackgroundScheduler] = None
        self._scheduler_lock = threading.Lock()

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # ------------------------------------------------------------------
    # 締め切りスキャン
    # ------------------------------------------------------------------
    def _build_message(self, kind: WorkItemKind, item: WorkItem) -> str:
        hours = self._settings.due_window_hours
        if kind is WorkItemKind.TASK:
            return f"Task '{item.title}' is due in less than {hours} hours!"
        return f"Event '{item.title}' is starting in less than {hours} hours!"

    def _notify_item(self, kind: WorkItemKind, item: WorkItem) -> Optional[Notification]:
        """
        1 アイテム分の重複チェックと通知作成。既に通知済みなら None を返す。
        """
        notification_kind = _NOTIFICATION_KIND[kind]
        try:
            self._store.find_notification(item.id, notification_kind)
        except NotFoundError:
            pass
        else:
            return None

        return self._store.create_notification(
            Notification(
                user_id=item.user_id,
                message=self._build_message(kind, item),
                kind=notification_kind,
                reference_id=item.id,
                read=False,
                emailed=False,
                created_at=self._clock(),
            )
        )

    def _scan_due(self, kind: WorkItemKind) -> ScanResult:
        result = ScanResult(kind=kind)
        try:
            items = self._store.list_due_work_items(
                kind,
                self._settings.due_window,
                now=self._clock(),
            )
        except StoreError as exc:
            logger.error("Error listing upcoming %ss: %s", kind.value, exc)
            result.error = str(exc)
            return result

        result.scanned = len(items)
        for item in items:
            try:
                created = self._notify_item(kind, item)
            except StoreError as exc:
                logger.warning("Error creating notification for %s %s: %s", kind.value, item.id, exc)
                result.failed += 1
                continue
            except Exception:  # noqa: BLE001 - 1 件の失敗で残りを止めない
                logger.exception("Unexpected error while notifying %s %s", kind.value, item.id)
                result.failed += 1
                continue

            if created is None:
                result.already_notified += 1
                continue

            result.created.append(created.id)
            logger.info("Created notification %s for %s %s", created.id, kind.value, item.id)

        return result

    def run_task_scan(self) -> ScanResult:
        """締め切りがウィンドウ内にある未完了タスクに TASK_DUE 通知を作る。"""
        return self._scan_due(WorkItemKind.TASK)

    def run_event_scan(self) -> ScanResult:
        """開始時刻がウィンドウ内にあるイベントに EVENT_START 通知を作る。"""
        return self._scan_due(WorkItemKind.EVENT)

    # ------------------------------------------------------------------
    # 未読通知のメールフォールバック
    # ------------------------------------------------------------------
    def _deliver(self, notification: Notification, result: DeliveryResult) -> None:
        try:
            user = self._store.get_user(notification.user_id)
        except NotFoundError:
            logger.warning(
                "Owner %s of notification %s not found; skipping",
                notification.user_id,
                notification.id,
            )
            result.missing_user += 1
            return

        if not user.is_verified:
            logger.info("Skipping email for unverified user %s", user.id)
            self._store.mark_emailed(notification.id)
            result.skipped_unverified += 1
            return

        try:
            self._notifier.send(user.email, EMAIL_SUBJECT, notification.message)
        except Exception as exc:  # noqa: BLE001 - 送信失敗は次のサイクルで再試行
            logger.warning("Error sending email to %s for notification %s: %s", user.email, notification.id, exc)
            result.failed += 1
            return

        self._store.mark_emailed(notification.id)
        result.emailed.append(notification.id)
        logger.info("Sent email for notification %s", notification.id)

    def run_stale_unread_scan(self, *, user_id: Optional[str] = None) -> DeliveryResult:
        """
        未読のまま stale_after を過ぎた通知をメールで送る。

        :param user_id: 指定した場合はそのユーザーの通知だけを対象にする
                        （クライアントからの「今すぐチェック」用）。
        """
        result = DeliveryResult()
        try:
            notifications = self._store.list_stale_unread(
                self._settings.stale_after,
                user_id=user_id,
                now=self._clock(),
            )
        except StoreError as exc:
            logger.error("Error listing unread notifications: %s", exc)
            result.error = str(exc)
            return result

        result.scanned = len(notifications)
        for notification in notifications:
            try:
                self._deliver(notification, result)
            except StoreError as exc:
                logger.warning("Error processing notification %s: %s", notification.id, exc)
                result.failed += 1
            except Exception:  # noqa: BLE001 - 1 件の失敗で残りを止めない
                logger.exception("Unexpected error while processing notification %s", notification.id)
                result.failed += 1

        return result

    # ------------------------------------------------------------------
    # サイクル
    # ------------------------------------------------------------------
    @staticmethod
    def _run_step(
        name: str,
        step: Callable[[], ResultT],
        fallback: Callable[[str], ResultT],
    ) -> ResultT:
        try:
            return step()
        except Exception as exc:  # noqa: BLE001 - ステップの失敗でサイクルを止めない
            logger.exception("Notification engine step '%s' failed", name)
            return fallback(str(exc))

    def run_cycle(self) -> CycleReport:
        """
        Task → Event → 未読 の順に 1 サイクル分を同期実行する。
        """
        started_at = self._clock()
        tasks = self._run_step(
            "tasks",
            self.run_task_scan,
            lambda err: ScanResult(kind=WorkItemKind.TASK, error=err),
        )
        events = self._run_step(
            "events",
            self.run_event_scan,
            lambda err: ScanResult(kind=WorkItemKind.EVENT, error=err),
        )
        stale = self._run_step(
            "stale_unread",
            self.run_stale_unread_scan,
            lambda err: DeliveryResult(error=err),
        )
        report = CycleReport(
            started_at=started_at,
            finished_at=self._clock(),
            tasks=tasks,
            events=events,
            stale=stale,
        )
        logger.debug(
            "Notification cycle finished: %d task / %d event notifications created, %d emails sent",
            len(tasks.created),
            len(events.created),
            len(stale.emailed),
        )
        return report

    # ------------------------------------------------------------------
    # 定期実行
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        scheduler = self._scheduler
        return scheduler is not None and scheduler.running

    def start(self) -> EngineHandle:
        """
        tick_seconds ごとの定期実行を開始する。

        - 最初のサイクルは 1 ティック後に走る
        - 既に起動済みなら何もしない（二重起動防止）
        """
        with self._scheduler_lock:
            if self._scheduler is not None and self._scheduler.running:
                logger.info("Notification engine already running, skipping start")
                return EngineHandle(self)

            scheduler = BackgroundScheduler(timezone="UTC")
            scheduler.add_job(
                self.run_cycle,
                trigger="interval",
                seconds=self._settings.tick_seconds,
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,  # サイクルを重ねない
                coalesce=True,  # 取りこぼしたティックは 1 回にまとめる
            )
            scheduler.start()
            self._scheduler = scheduler

        logger.info(
            "Notification engine started: cycle every %d seconds",
            self._settings.tick_seconds,
        )
        return EngineHandle(self)

    def stop(self, *, wait: bool = True) -> None:
        """
        次のティックを止め、実行中のサイクルがあれば完了を待ってから戻る。

        起動していない場合は何もしない。
        """
        with self._scheduler_lock:
            scheduler, self._scheduler = self._scheduler, None

        if scheduler is None:
            return

        if scheduler.running:
            scheduler.shutdown(wait=wait)
        logger.info("Notification engine stopped")
