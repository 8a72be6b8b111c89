# backend/studybuddy/store/config.py

"""
永続化バックエンドの設定値をまとめるモジュール。
"""

from dataclasses import dataclass
from typing import Optional

from studybuddy.utils.config import get_env, get_env_int

from .mongo import DEFAULT_DB_NAME, DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class StoreConfig:
    """ストア選択・接続用の設定値コンテナ。"""

    mongo_uri: Optional[str] = None
    db_name: str = DEFAULT_DB_NAME
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def uses_mongo(self) -> bool:
        return bool(self.mongo_uri)


def get_store_config() -> StoreConfig:
    """
    環境変数からストア設定を読み込む。

    任意:
      - MONGO_URI             (未設定ならインメモリストア)
      - MONGO_DB_NAME         (デフォルト: studybuddy)
      - MONGO_TIMEOUT_SECONDS (デフォルト: 5秒)
    """
    return StoreConfig(
        mongo_uri=get_env("MONGO_URI", required=False),
        db_name=get_env("MONGO_DB_NAME", default=DEFAULT_DB_NAME, required=False),
        timeout_seconds=float(
            get_env_int("MONGO_TIMEOUT_SECONDS", default=int(DEFAULT_TIMEOUT_SECONDS))
        ),
    )
