# backend/studybuddy/store/errors.py

"""
ストア層の例外定義。

どちらのバックエンド（インメモリ / MongoDB）も同じ例外を投げるため、
呼び出し側はバックエンドの種類を意識せずに分岐できる。
"""


class StoreError(Exception):
    """ストア操作全般の基底例外。"""


class NotFoundError(StoreError):
    """指定 ID（またはキー）に一致するレコードが存在しない場合の例外。"""

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class StoreValidationError(StoreError, ValueError):
    """期間やクエリ種別など、クエリ入力が不正な場合の例外。"""


class TransientStoreError(StoreError):
    """タイムアウト・接続エラーなど、次回実行で回復しうる例外。"""


class StoreInitError(StoreError):
    """起動時にストアを確立できなかった場合の例外（致命的）。"""
