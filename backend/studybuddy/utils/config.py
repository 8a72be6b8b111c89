# backend/studybuddy/utils/config.py

"""
環境変数読み取り用のユーティリティ。
ストア / エンジン / メール送信の各設定モジュールから共通利用する。
"""

import os
from typing import Optional


class EnvVarMissingError(RuntimeError):
    """必須環境変数が設定されていない場合に投げる例外。"""

    def __init__(self, name: str) -> None:
        super().__init__(f"Required environment variable '{name}' is not set.")
        self.name = name


def get_env(
    name: str,
    default: Optional[str] = None,
    *,
    required: bool = True,
) -> Optional[str]:
    """
    環境変数を取得するヘルパー。

    :param name: 環境変数名
    :param default: デフォルト値（required=False の場合のみ使用）
    :param required: True の場合、未設定なら例外を投げる
    :return: 文字列値
    """
    value = os.getenv(name)

    if value is None or value == "":
        if required:
            raise EnvVarMissingError(name)
        return default

    return value


def get_env_int(name: str, default: int) -> int:
    """
    整数の環境変数を取得するユーティリティ。

    - 未設定 or パース不能の場合は default を返す。
    """
    raw = get_env(name, default=None, required=False)
    if raw is None:
        return default

    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """
    真偽値の環境変数を取得する。

    "1" / "true" / "yes" / "on"（大文字小文字は無視）を True とみなす。
    """
    raw = get_env(name, default=None, required=False)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
