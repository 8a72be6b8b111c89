# backend/studybuddy/engine/jobs.py
from __future__ import annotations

import logging
import signal
import threading
from typing import Optional

from .factory import build_engine
from .schemas import CycleReport
from .service import NotificationEngine

logger = logging.getLogger(__name__)


def run_once(*, engine: NotificationEngine) -> CycleReport:
    """
    1 サイクルだけ同期実行する。

    cron などから「今すぐ 1 回だけ回したい」場合に利用する。
    """
    report = engine.run_cycle()
    logger.info(
        "Cycle done: tasks=%d events=%d emailed=%d failed=%d",
        len(report.tasks.created),
        len(report.events.created),
        len(report.stale.emailed),
        report.tasks.failed + report.events.failed + report.stale.failed,
    )
    return report


def run_forever(
    *,
    engine: NotificationEngine,
    stop_event: Optional[threading.Event] = None,
) -> None:
    """
    エンジンを起動し、stop_event がセットされるまでブロックする。

    戻る前に engine.stop() を呼び、実行中のサイクルの完了を待つ。
    """
    stop_event = stop_event or threading.Event()
    handle = engine.start()
    try:
        stop_event.wait()
    finally:
        handle.stop(wait=True)


def main() -> None:
    """
    簡易 CLI エントリーポイント。

    例:
        python -m studybuddy.engine.jobs once
        python -m studybuddy.engine.jobs run
    """
    import argparse

    parser = argparse.ArgumentParser(description="Notification engine runner")
    parser.add_argument(
        "job",
        choices=["once", "run"],
        help="once: 1 サイクルだけ実行 / run: 定期実行（SIGINT/SIGTERM で停止）",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # ストアに接続できない場合は StoreInitError のまま終了する
    engine = build_engine()

    if args.job == "once":
        run_once(engine=engine)
    elif args.job == "run":
        stop_event = threading.Event()

        def _handle_signal(signum, frame) -> None:  # noqa: ARG001
            logger.info("Received signal %s, stopping notification engine", signum)
            stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
        run_forever(engine=engine, stop_event=stop_event)


if __name__ == "__main__":
    main()
