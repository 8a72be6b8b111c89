# backend/studybuddy/engine/config.py

"""
NotificationEngine の設定値。

ティック間隔・締め切りウィンドウ・未読しきい値は互いに独立した定数で、
ティック間隔から他の値を導出することはしない。
"""

from dataclasses import dataclass
from datetime import timedelta

from studybuddy.utils.config import get_env_bool, get_env_int


@dataclass(frozen=True)
class EngineSettings:
    """エンジンの動作パラメータ。"""

    tick_seconds: int = 60
    due_window: timedelta = timedelta(hours=24)
    stale_after: timedelta = timedelta(hours=1)
    enabled: bool = False

    @property
    def due_window_hours(self) -> int:
        """通知文言に埋め込む時間数（切り上げ）。"""
        return max(1, -(-int(self.due_window.total_seconds()) // 3600))


def get_engine_settings() -> EngineSettings:
    """
    環境変数からエンジン設定を読み込む。

    任意:
      - ENGINE_TICK_SECONDS        (デフォルト: 60)
      - ENGINE_DUE_WINDOW_HOURS    (デフォルト: 24)
      - ENGINE_STALE_AFTER_MINUTES (デフォルト: 60)
      - ENGINE_ENABLED             (デフォルト: false。API プロセス内でエンジンを起動するか)
    """
    return EngineSettings(
        tick_seconds=max(1, get_env_int("ENGINE_TICK_SECONDS", default=60)),
        due_window=timedelta(hours=max(1, get_env_int("ENGINE_DUE_WINDOW_HOURS", default=24))),
        stale_after=timedelta(minutes=max(0, get_env_int("ENGINE_STALE_AFTER_MINUTES", default=60))),
        enabled=get_env_bool("ENGINE_ENABLED", default=False),
    )
