"""クーポン発行ロジック

受信イベントごとに以下の順で評価し、最初に該当したもので確定する。
1. 重複イベント → 何もしない
2. キーワード不一致 → 何もしない
3. クールダウン中 → 「発行済み」通知
4. 1日の発行上限 → 「本日の上限」通知
5. 未失効・未消尽の既存券 → 再提示 (使えない券はステータス補正して続行)
6. 新規発行
7. 通知 (失敗してもクーポンは確定)
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from app.core.config import CouponPolicy
from app.models.coupon import Coupon, CouponStatus
from app.schemas.line import TriggerEvent
from app.services.code_generator import generate_code
from app.services.coupon_store import CouponStore
from app.services.dedup import DedupGate
from app.services.errors import NotificationError
from app.services.line_service import Notifier
from app.core.logging import get_logger

logger = get_logger(__name__)

COOLDOWN_NOTICE = "直近にクーポンを発行済みです。発行済みのクーポンをご利用ください"
DAILY_LIMIT_NOTICE = "本日の発行上限に達しました。明日またお試しください。"


class IssuanceOutcome(str, Enum):
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    COOLDOWN = "cooldown"
    DAILY_LIMIT = "daily_limit"
    REUSED = "reused"
    ISSUED = "issued"


@dataclass(frozen=True)
class IssuanceResult:
    outcome: IssuanceOutcome
    coupon: Optional[Coupon] = None
    notified: bool = False


class IssuanceService:

    def __init__(
        self,
        store: CouponStore,
        notifier: Notifier,
        policy: CouponPolicy,
        clock: Optional[Callable[[], datetime]] = None,
        code_factory: Callable[[], str] = generate_code,
    ):
        self.store = store
        self.notifier = notifier
        self.policy = policy
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.code_factory = code_factory
        self.dedup = DedupGate(store, self.clock)

    def handle_trigger(self, event: TriggerEvent) -> IssuanceResult:
        now = self.clock()

        if not self.dedup.try_claim(event.event_id):
            return IssuanceResult(IssuanceOutcome.DUPLICATE)

        if event.text not in self.policy.keywords:
            return IssuanceResult(IssuanceOutcome.IGNORED)

        owner_id = event.owner_id

        if self._in_cooldown(owner_id, now):
            logger.info(f"クールダウン中のため発行しない: user={owner_id}")
            notified = self._send_notice(event, COOLDOWN_NOTICE)
            return IssuanceResult(IssuanceOutcome.COOLDOWN, notified=notified)

        if self._daily_limit_reached(owner_id, now):
            logger.info(f"本日の発行上限に到達: user={owner_id}")
            notified = self._send_notice(event, DAILY_LIMIT_NOTICE)
            return IssuanceResult(IssuanceOutcome.DAILY_LIMIT, notified=notified)

        coupon = self._find_reusable(owner_id, now)
        if coupon is not None:
            outcome = IssuanceOutcome.REUSED
            logger.info(f"既存クーポンを再提示: id={coupon.id}, user={owner_id}")
        else:
            outcome = IssuanceOutcome.ISSUED
            coupon = self.store.create(
                owner_id=owner_id,
                code=self.code_factory(),
                issued_at=now,
                expires_at=now + self.policy.validity,
                usage_limit=self.policy.usage_limit,
            )

        notified = self._send_coupon(event, coupon)
        return IssuanceResult(outcome, coupon, notified)

    def _in_cooldown(self, owner_id: str, now: datetime) -> bool:
        last = self.store.find_most_recent_for_owner(owner_id)
        if last is None:
            return False
        return now - last.issued_at < self.policy.cooldown

    def _daily_limit_reached(self, owner_id: str, now: datetime) -> bool:
        if self.policy.max_per_day <= 0:
            return False
        start = start_of_day(now, self.policy)
        return self.store.count_issued_since(owner_id, start) >= self.policy.max_per_day

    def _find_reusable(self, owner_id: str, now: datetime) -> Optional[Coupon]:
        coupon = self.store.find_active_for_owner(owner_id)
        if coupon is None:
            return None
        if coupon.is_redeemable(now):
            return coupon

        new_status = CouponStatus.CONSUMED if coupon.is_exhausted() else CouponStatus.EXPIRED
        self.store.mark_expired_or_consumed(coupon.id, new_status)
        logger.info(f"使用不可の既存クーポンを補正: id={coupon.id}, status={new_status.value}")
        return None

    def _send_coupon(self, event: TriggerEvent, coupon: Coupon) -> bool:
        try:
            self.notifier.notify(event.owner_id, coupon, event.reply_token)
            return True
        except NotificationError as e:
            logger.error(
                f"クーポン通知失敗: user={event.owner_id}, coupon={coupon.id} - {e}",
                extra={"extra_data": {"status": e.status_code, "body": e.body}},
            )
            return False

    def _send_notice(self, event: TriggerEvent, text: str) -> bool:
        try:
            self.notifier.notify_text(event.owner_id, text, event.reply_token)
            return True
        except NotificationError as e:
            logger.error(f"お知らせ通知失敗: user={event.owner_id} - {e}")
            return False


def start_of_day(now: datetime, policy: CouponPolicy) -> datetime:
    """設定タイムゾーンでの当日 0:00"""
    local = now.astimezone(policy.timezone)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)
