from dataclasses import dataclass
from datetime import datetime

EVENTS_COLLECTION = "events"
DEDUP_PREFIX = "dedup_"


@dataclass(frozen=True)
class TriggerEventRecord:
    """処理済みイベントの記録 (追記のみ、存在確認にのみ使う)"""

    event_id: str
    at: datetime

    @property
    def document_id(self) -> str:
        return dedup_document_id(self.event_id)

    def to_document(self) -> dict:
        return {"at": self.at}


def dedup_document_id(event_id: str) -> str:
    return f"{DEDUP_PREFIX}{event_id}"
