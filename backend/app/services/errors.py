"""サービス層の例外"""


class CouponServiceError(Exception):
    """クーポンサービス共通の基底例外"""


class IndexUnavailableError(CouponServiceError):
    """複合インデックス未作成 (クエリ形状の失敗、全件スキャンで代替可能)"""


class NotificationError(CouponServiceError):
    """LINE への送信失敗"""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
