"""消込トランザクション本体の判定

トランザクション内で読み直したクーポンを受け取り、結果 (理由 + 書き込む差分) を返す。
例外は使わない。呼び出し側は changes をそのまま書き込むだけ。
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from app.models.coupon import Coupon, CouponStatus


class RedeemReason(str, Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_CONSUMED_OR_INACTIVE = "ALREADY_CONSUMED_OR_INACTIVE"
    EXPIRED = "EXPIRED"
    LIMIT_REACHED = "LIMIT_REACHED"


@dataclass(frozen=True)
class RedeemOutcome:
    reason: RedeemReason
    coupon: Optional[Coupon] = None
    # Firestore フィールド名 → 新しい値
    changes: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.reason == RedeemReason.OK

    @property
    def remaining_uses(self) -> Optional[int]:
        return self.coupon.remaining_uses if self.coupon else None


def evaluate_redemption(coupon: Optional[Coupon], now: datetime) -> RedeemOutcome:
    if coupon is None:
        return RedeemOutcome(RedeemReason.NOT_FOUND)

    if coupon.status != CouponStatus.ACTIVE:
        return RedeemOutcome(RedeemReason.ALREADY_CONSUMED_OR_INACTIVE, coupon)

    if coupon.is_expired(now):
        return RedeemOutcome(
            RedeemReason.EXPIRED,
            _apply(coupon, status=CouponStatus.EXPIRED),
            {"status": CouponStatus.EXPIRED.value},
        )

    if coupon.is_exhausted():
        return RedeemOutcome(
            RedeemReason.LIMIT_REACHED,
            _apply(coupon, status=CouponStatus.CONSUMED),
            {"status": CouponStatus.CONSUMED.value},
        )

    next_count = coupon.usage_count + 1
    changes = {"usageCount": next_count, "lastUsedAt": now}
    status = coupon.status
    if next_count >= coupon.usage_limit:
        status = CouponStatus.CONSUMED
        changes["status"] = status.value

    return RedeemOutcome(
        RedeemReason.OK,
        _apply(coupon, usage_count=next_count, last_used_at=now, status=status),
        changes,
    )


def _apply(coupon: Coupon, **values) -> Coupon:
    return replace(coupon, **values)
