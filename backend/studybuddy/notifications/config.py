# backend/studybuddy/notifications/config.py

"""
メール送信に必要な設定値をまとめるモジュール。
"""

from dataclasses import dataclass
from typing import Optional

from studybuddy.utils.config import get_env, get_env_int


@dataclass(frozen=True)
class EmailConfig:
    """SMTP / HTTP メールリレー用の設定値コンテナ。"""

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    from_address: Optional[str] = None
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: int = 10

    @property
    def smtp_enabled(self) -> bool:
        # ホストとユーザーの両方が揃っていなければモック送信扱い
        return bool(self.smtp_host and self.smtp_user)

    @property
    def api_enabled(self) -> bool:
        return bool(self.api_url)

    @property
    def sender(self) -> str:
        return self.from_address or self.smtp_user or "no-reply@studybuddy.local"


def get_email_config() -> EmailConfig:
    """
    環境変数からメール送信設定を読み込む。

    任意:
      - SMTP_HOST / SMTP_PORT (デフォルト 587) / SMTP_USER / SMTP_PASS / SMTP_FROM
      - EMAIL_API_URL / EMAIL_API_KEY
      - EMAIL_TIMEOUT_SECONDS (デフォルト 10秒)

    いずれも未設定の場合、メールはログ出力のみになる。
    """
    return EmailConfig(
        smtp_host=get_env("SMTP_HOST", required=False),
        smtp_port=get_env_int("SMTP_PORT", default=587),
        smtp_user=get_env("SMTP_USER", required=False),
        smtp_password=get_env("SMTP_PASS", required=False),
        from_address=get_env("SMTP_FROM", required=False),
        api_url=get_env("EMAIL_API_URL", required=False),
        api_key=get_env("EMAIL_API_KEY", required=False),
        timeout_seconds=get_env_int("EMAIL_TIMEOUT_SECONDS", default=10),
    )
