"""
メール送信レイヤ用モジュール群。

構成:
- schemas: 送信メッセージのスキーマ
- service: Notifier インターフェースと実装（ログ / SMTP / HTTP リレー）
- factory: 設定に応じた Notifier の生成
"""
