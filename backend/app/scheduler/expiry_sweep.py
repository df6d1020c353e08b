"""期限切れのまま active になっているクーポンを expired に補正"""
from datetime import datetime, timezone
from typing import Optional

from app.models.coupon import CouponStatus
from app.services.coupon_store import CouponStore
from app.core.logging import get_logger

logger = get_logger(__name__)


def expire_stale_coupons(store: CouponStore, now: Optional[datetime] = None) -> int:
    """補正した件数を返す"""
    now = now or datetime.now(timezone.utc)
    stale = store.find_stale_active(now)
    expired = 0
    for coupon in stale:
        if store.mark_expired_or_consumed(coupon.id, CouponStatus.EXPIRED):
            expired += 1
    if expired:
        logger.info(f"期限切れクーポンを補正: {expired}件")
    return expired


def expiry_sweep_job(store: CouponStore):
    """スケジューラ用ラッパー (例外はログのみ)"""
    try:
        expire_stale_coupons(store)
    except Exception as e:
        logger.error(f"期限切れ補正エラー: {e}")
