"""スタッフによるクーポン消込"""
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from app.core.config import CouponPolicy
from app.models.coupon import CouponStatus
from app.services.code_generator import normalize_code
from app.services.coupon_store import CouponStore
from app.services.redemption_rules import RedeemOutcome, RedeemReason
from app.core.logging import get_logger

logger = get_logger(__name__)


class RedeemStatus(str, Enum):
    OK = "OK"
    BAD_REQUEST = "BAD_REQUEST"
    INVALID_PASS = "INVALID_PASS"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    LIMIT_REACHED = "LIMIT_REACHED"
    CONSUMED = "CONSUMED"
    ERROR = "ERROR"


HTTP_STATUS = {
    RedeemStatus.OK: 200,
    RedeemStatus.BAD_REQUEST: 400,
    RedeemStatus.INVALID_PASS: 403,
    RedeemStatus.NOT_FOUND: 404,
    RedeemStatus.EXPIRED: 409,
    RedeemStatus.LIMIT_REACHED: 409,
    RedeemStatus.CONSUMED: 409,
    RedeemStatus.ERROR: 500,
}

MESSAGES = {
    RedeemStatus.OK: "消込が完了しました。",
    RedeemStatus.BAD_REQUEST: "コードが指定されていません。",
    RedeemStatus.INVALID_PASS: "スタッフパスが正しくありません。",
    RedeemStatus.NOT_FOUND: "クーポンが見つかりません。",
    RedeemStatus.EXPIRED: "クーポンの有効期限が切れています。",
    RedeemStatus.LIMIT_REACHED: "使用上限に達しています。",
    RedeemStatus.CONSUMED: "このクーポンは使用済みです。",
    RedeemStatus.ERROR: "処理できませんでした。時間をおいて再度お試しください。",
}


@dataclass(frozen=True)
class RedeemResult:
    status: RedeemStatus
    code: str = ""
    reason: Optional[str] = None
    remaining_uses: Optional[int] = None
    usage_limit: Optional[int] = None
    usage_count: Optional[int] = None
    coupon_status: Optional[CouponStatus] = None

    @property
    def ok(self) -> bool:
        return self.status == RedeemStatus.OK

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.status]

    @property
    def message(self) -> str:
        return MESSAGES[self.status]


class RedemptionService:

    def __init__(
        self,
        store: CouponStore,
        policy: CouponPolicy,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.policy = policy
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def redeem(self, code: Optional[str], staff_pass: Optional[str] = None) -> RedeemResult:
        code = normalize_code(code)
        if not code:
            return RedeemResult(RedeemStatus.BAD_REQUEST, reason="MISSING_CODE")

        if not self._pass_ok(staff_pass):
            logger.info(f"スタッフパス不一致: code={code}")
            return RedeemResult(RedeemStatus.INVALID_PASS, code, reason="STAFF_AUTH_FAILED")

        coupon = self.store.find_by_code(code)
        if coupon is None:
            return RedeemResult(RedeemStatus.NOT_FOUND, code, reason="NOT_FOUND")

        outcome = self.store.transactional_redeem(coupon.id, self.clock())
        result = _to_result(code, outcome)
        if result.ok:
            logger.info(
                f"消込成功: id={coupon.id}, code={code}, "
                f"usage={result.usage_count}/{result.usage_limit}"
            )
        else:
            logger.info(f"消込不可: code={code}, reason={outcome.reason.value}")
        return result

    def _pass_ok(self, staff_pass: Optional[str]) -> bool:
        expected = self.policy.staff_pass
        if not expected:
            return True
        return hmac.compare_digest(expected.encode("utf-8"), (staff_pass or "").encode("utf-8"))


def _to_result(code: str, outcome: RedeemOutcome) -> RedeemResult:
    coupon = outcome.coupon
    if outcome.reason == RedeemReason.OK:
        status = RedeemStatus.OK
    elif outcome.reason == RedeemReason.NOT_FOUND:
        status = RedeemStatus.NOT_FOUND
    elif outcome.reason == RedeemReason.EXPIRED:
        status = RedeemStatus.EXPIRED
    elif outcome.reason == RedeemReason.LIMIT_REACHED:
        status = RedeemStatus.LIMIT_REACHED
    elif coupon is not None and coupon.status == CouponStatus.EXPIRED:
        status = RedeemStatus.EXPIRED
    else:
        status = RedeemStatus.CONSUMED

    if coupon is None:
        return RedeemResult(status, code, reason=outcome.reason.value)

    return RedeemResult(
        status,
        code,
        reason=outcome.reason.value,
        remaining_uses=coupon.remaining_uses,
        usage_limit=coupon.usage_limit,
        usage_count=coupon.usage_count,
        coupon_status=coupon.status,
    )
