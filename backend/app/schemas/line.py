from pydantic import BaseModel
from typing import Optional


class TriggerEvent(BaseModel):
    """クーポン発行のきっかけになる受信メッセージ"""

    event_id: str
    owner_id: str
    text: str
    reply_token: Optional[str] = None


def parse_trigger_events(body: dict) -> list[TriggerEvent]:
    """LINE Webhook ボディからテキストメッセージイベントだけを取り出す"""
    events = []
    for event in body.get("events") or []:
        if event.get("type") != "message":
            continue
        message = event.get("message") or {}
        if message.get("type") != "text":
            continue
        user_id = (event.get("source") or {}).get("userId")
        event_id = message.get("id") or event.get("replyToken")
        if not user_id or not event_id:
            continue
        events.append(TriggerEvent(
            event_id=str(event_id),
            owner_id=user_id,
            text=(message.get("text") or "").strip(),
            reply_token=event.get("replyToken"),
        ))
    return events
