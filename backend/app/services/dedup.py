"""イベント重複処理防止 (LINE 側の再送対策)

存在確認 → 記録 の2段階で、同一イベントの同時再送に対しては厳密ではない。
"""
from datetime import datetime, timezone
from typing import Callable, Optional

from app.services.coupon_store import CouponStore
from app.core.logging import get_logger

logger = get_logger(__name__)


class DedupGate:

    def __init__(self, store: CouponStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def try_claim(self, event_id: str) -> bool:
        """未処理なら True (処理権を取得)。処理済みなら False"""
        claimed = self.store.claim_event(event_id, self.clock())
        if not claimed:
            logger.info(f"重複イベントをスキップ: {event_id}")
        return claimed
