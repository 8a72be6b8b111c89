"""
締め切り通知エンジン用モジュール群。

- schemas: スキャン結果のスキーマ
- service: NotificationEngine 本体（スキャン・メール送信・定期実行）
- factory: 環境変数からのエンジン組み立て
- jobs: CLI エントリーポイント
"""
