from pydantic import AliasChoices, BaseModel, Field, computed_field
from typing import Optional
from datetime import datetime

from app.models.coupon import Coupon
from app.services.redemption_service import RedeemResult


class RedeemRequest(BaseModel):
    code: Optional[str] = None
    staff_pass: Optional[str] = Field(
        None, validation_alias=AliasChoices("staffPass", "staff_pass", "pass")
    )


class RedeemResponse(BaseModel):
    """消込結果 (camelCase で返す。remain / limit は旧スタッフ画面向け)"""

    ok: bool
    status: str
    message: str
    code: str = ""
    reason: Optional[str] = None
    remaining_uses: Optional[int] = Field(None, serialization_alias="remainingUses")
    usage_limit: Optional[int] = Field(None, serialization_alias="usageLimit")
    usage_count: Optional[int] = Field(None, serialization_alias="usageCount")
    coupon_status: Optional[str] = Field(None, serialization_alias="couponStatus")

    @computed_field
    @property
    def remain(self) -> Optional[int]:
        return self.remaining_uses

    @computed_field
    @property
    def limit(self) -> Optional[int]:
        return self.usage_limit

    @classmethod
    def from_result(cls, result: RedeemResult) -> "RedeemResponse":
        return cls(
            ok=result.ok,
            status=result.status.value,
            message=result.message,
            code=result.code,
            reason=result.reason,
            remaining_uses=result.remaining_uses,
            usage_limit=result.usage_limit,
            usage_count=result.usage_count,
            coupon_status=result.coupon_status.value if result.coupon_status else None,
        )


class CouponInfo(BaseModel):
    code: str
    status: str
    usage_count: int
    usage_limit: int
    remaining_uses: int
    issued_at: datetime
    expires_at: datetime
    last_used_at: Optional[datetime] = None
    redeemable: bool

    @classmethod
    def from_coupon(cls, coupon: Coupon, now: datetime) -> "CouponInfo":
        return cls(
            code=coupon.code,
            status=coupon.status.value,
            usage_count=coupon.usage_count,
            usage_limit=coupon.usage_limit,
            remaining_uses=coupon.remaining_uses,
            issued_at=coupon.issued_at,
            expires_at=coupon.expires_at,
            last_used_at=coupon.last_used_at,
            redeemable=coupon.is_redeemable(now),
        )
