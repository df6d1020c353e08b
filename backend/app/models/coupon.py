from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

COUPONS_COLLECTION = "coupons"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Coupon:
    """クーポン (Firestore coupons コレクションの1ドキュメント)"""

    id: str
    code: str
    owner_id: str
    issued_at: datetime
    expires_at: datetime
    usage_limit: int
    usage_count: int = 0
    status: CouponStatus = CouponStatus.ACTIVE
    last_used_at: Optional[datetime] = None

    @property
    def remaining_uses(self) -> int:
        return max(0, self.usage_limit - self.usage_count)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_exhausted(self) -> bool:
        return self.usage_count >= self.usage_limit

    def is_redeemable(self, now: datetime) -> bool:
        return (
            self.status == CouponStatus.ACTIVE
            and not self.is_expired(now)
            and not self.is_exhausted()
        )

    def to_document(self) -> dict:
        """Firestore 保存形式 (フィールド名は既存データに合わせ camelCase)"""
        return {
            "code": self.code,
            "userId": self.owner_id,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
            "usageLimit": self.usage_limit,
            "usageCount": self.usage_count,
            "status": self.status.value,
            "lastUsedAt": self.last_used_at,
        }

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Coupon":
        return cls(
            id=doc_id,
            code=data["code"],
            owner_id=data["userId"],
            issued_at=data["issuedAt"],
            expires_at=data["expiresAt"],
            usage_limit=int(data["usageLimit"]),
            usage_count=int(data.get("usageCount", 0)),
            status=CouponStatus(data.get("status", CouponStatus.ACTIVE.value)),
            last_used_at=data.get("lastUsedAt"),
        )
