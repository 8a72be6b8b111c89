# backend/studybuddy/notifications/service.py

"""
メール送信インターフェース（Notifier）と実装。

- Notifier: send(to, subject, body) の最小インターフェース
- LoggingEmailSender: ログ出力のみ（送信先が未設定の開発環境用）
- SmtpEmailSender: SMTP でプレーンテキストメールを送る
- HttpEmailSender: HTTP のメールリレー API に JSON で POST する

送信に失敗した場合は NotificationDeliveryError を投げる。
正常に return した場合のみ「送信成功」とみなす。
"""

from __future__ import annotations

import email.message
import logging
import smtplib
from typing import Dict, Optional, Protocol

import httpx

from .config import EmailConfig
from .schemas import EmailMessage

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """メール送信に失敗した場合の例外。"""


class Notifier(Protocol):
    """
    メール送信の最小インターフェース。

    実装例:
    - LoggingEmailSender: ログ出力のみ
    - SmtpEmailSender: SMTP 経由で送信
    - HttpEmailSender: HTTP メールリレー経由で送信
    """

    def send(self, to: str, subject: str, body: str) -> None:  # pragma: no cover - Protocol
        ...


class LoggingEmailSender:
    """
    メールを Python の logger に記録するだけの Sender。

    - SMTP / HTTP のどちらも設定されていない場合のデフォルト
    - 実際の外部サービスへの送信は行わない
    """

    def __init__(self, logger_: logging.Logger | None = None) -> None:
        self._logger = logger_ or logger

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage(to=to, subject=subject, body=body)
        self._logger.info(
            "Mock email to %s: Subject: %s Body: %s",
            message.to,
            message.subject,
            message.body,
        )


class SmtpEmailSender:
    """
    SMTP でプレーンテキストのメールを送る Sender。
    """

    def __init__(self, config: EmailConfig) -> None:
        if not config.smtp_enabled:
            raise ValueError("SMTP_HOST and SMTP_USER must be configured for SmtpEmailSender")
        self._config = config

    def _build(self, message: EmailMessage) -> email.message.EmailMessage:
        mime = email.message.EmailMessage()
        mime["From"] = self._config.sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.set_content(message.body)
        return mime

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage(to=to, subject=subject, body=body)
        try:
            with smtplib.SMTP(
                self._config.smtp_host,
                self._config.smtp_port,
                timeout=self._config.timeout_seconds,
            ) as server:
                server.starttls()
                if self._config.smtp_password:
                    server.login(self._config.smtp_user, self._config.smtp_password)
                server.send_message(self._build(message))
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(f"SMTP delivery to {to} failed: {exc}") from exc

        logger.info("Sent email to %s via SMTP", to)


class HttpEmailSender:
    """
    HTTP のメールリレー API にメールを POST する Sender。

    NOTE:
      - api_url には「送信エンドポイントのフル URL」が入っている想定。
      - transport はテストで httpx.MockTransport を差し込むためのもの。
    """

    def __init__(
        self,
        config: EmailConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not config.api_enabled:
            raise ValueError("EMAIL_API_URL must be configured for HttpEmailSender")
        self._config = config
        self._transport = transport

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def send(self, to: str, subject: str, body: str) -> None:
        """
        :raises NotificationDeliveryError: 接続エラー・タイムアウト・2xx 以外の応答。
        """
        message = EmailMessage(to=to, subject=subject, body=body)
        payload = message.to_payload()
        payload["from"] = self._config.sender

        try:
            with httpx.Client(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.post(
                    self._config.api_url,
                    json=payload,
                    headers=self._build_headers(),
                )
        except httpx.RequestError as exc:  # 接続エラー・タイムアウトなど
            raise NotificationDeliveryError(f"Email relay request failed: {exc}") from exc

        if response.status_code // 100 != 2:
            raise NotificationDeliveryError(
                f"Email relay returned status_code={response.status_code}: {response.text}"
            )

        logger.info("Sent email to %s via relay", to)
