"""LINE Messaging API 送信サービス"""
import base64
import hashlib
import hmac
import urllib.parse
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import httpx

from app.models.coupon import Coupon
from app.services.errors import NotificationError
from app.core.logging import get_logger

logger = get_logger(__name__)

LINE_API_BASE = "https://api.line.me"
JST = ZoneInfo("Asia/Tokyo")


def verify_signature(body: bytes, signature: str, channel_secret: str) -> bool:
    """x-line-signature (HMAC-SHA256 / base64) を検証"""
    if not signature:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)


def format_jst(dt: datetime) -> str:
    return dt.astimezone(JST).strftime("%Y/%m/%d %H:%M（JST）")


def redeem_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/liff?code={urllib.parse.quote(code)}"


def coupon_flex(coupon: Coupon, base_url: str) -> dict:
    """クーポン表示用 Flex Message"""
    return {
        "type": "flex",
        "altText": "クーポンが届きました",
        "contents": {
            "type": "bubble",
            "body": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    {"type": "text", "text": "🎁 クーポン", "weight": "bold", "size": "xl"},
                    {"type": "text", "text": f"コード：{coupon.code}", "margin": "md"},
                    {"type": "text", "text": f"有効期限：{format_jst(coupon.expires_at)}", "size": "sm", "color": "#888888"},
                    {"type": "text", "text": f"残り使用回数：{coupon.remaining_uses} / {coupon.usage_limit}", "margin": "sm"},
                ],
            },
            "footer": {
                "type": "box",
                "layout": "vertical",
                "contents": [
                    {
                        "type": "button",
                        "style": "primary",
                        "action": {"type": "uri", "label": "使う（スタッフ）", "uri": redeem_url(base_url, coupon.code)},
                    },
                    {"type": "text", "text": "※会計時にスタッフが押します", "size": "xs", "color": "#888888", "wrap": True, "margin": "sm"},
                ],
            },
        },
    }


class Notifier(ABC):
    """通知送信 (失敗時は NotificationError)"""

    @abstractmethod
    def notify(self, owner_id: str, coupon: Coupon, reply_token: Optional[str] = None):
        ...

    @abstractmethod
    def notify_text(self, owner_id: str, text: str, reply_token: Optional[str] = None):
        ...


class LineNotifier(Notifier):
    """reply token があれば返信API、なければプッシュAPIで送信"""

    def __init__(self, channel_access_token: str, public_base_url: str, client: Optional[httpx.Client] = None):
        self.channel_access_token = channel_access_token
        self.public_base_url = public_base_url
        self.client = client or httpx.Client(base_url=LINE_API_BASE, timeout=10)

    def notify(self, owner_id: str, coupon: Coupon, reply_token: Optional[str] = None):
        logger.info(f"redeemUrl: {redeem_url(self.public_base_url, coupon.code)}")
        self._send(owner_id, [coupon_flex(coupon, self.public_base_url)], reply_token)

    def notify_text(self, owner_id: str, text: str, reply_token: Optional[str] = None):
        self._send(owner_id, [{"type": "text", "text": text}], reply_token)

    def _send(self, owner_id: str, messages: list[dict], reply_token: Optional[str]):
        if not self.channel_access_token:
            raise NotificationError("LINE_CHANNEL_ACCESS_TOKEN が設定されていません")

        if reply_token:
            path, payload = "/v2/bot/message/reply", {"replyToken": reply_token, "messages": messages}
        else:
            path, payload = "/v2/bot/message/push", {"to": owner_id, "messages": messages}

        try:
            resp = self.client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {self.channel_access_token}"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"LINE送信エラー: {e.response.status_code}",
                status_code=e.response.status_code,
                body=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"LINE送信エラー: {e}") from e

    def close(self):
        self.client.close()
