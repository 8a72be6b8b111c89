# backend/studybuddy/notifications/factory.py

"""
Notifier の簡易ファクトリ。

優先順位:
- EMAIL_API_URL があれば HttpEmailSender
- SMTP_HOST / SMTP_USER があれば SmtpEmailSender
- どちらもなければ LoggingEmailSender（ログ出力のみ）
"""

from __future__ import annotations

from typing import Optional

from .config import EmailConfig, get_email_config
from .service import HttpEmailSender, LoggingEmailSender, Notifier, SmtpEmailSender


def build_notifier(config: Optional[EmailConfig] = None) -> Notifier:
    """設定に応じた Notifier を生成する。"""
    config = config or get_email_config()
    if config.api_enabled:
        return HttpEmailSender(config)
    if config.smtp_enabled:
        return SmtpEmailSender(config)
    return LoggingEmailSender()
