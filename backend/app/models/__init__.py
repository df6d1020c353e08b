from app.models.coupon import Coupon, CouponStatus
from app.models.trigger_event import TriggerEventRecord

__all__ = [
    "Coupon",
    "CouponStatus",
    "TriggerEventRecord",
]
