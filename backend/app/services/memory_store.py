"""インメモリのクーポンストア (ローカル開発・テスト用、STORE_BACKEND=memory)

ドキュメント単位のロックで同一クーポンへの書き込みを直列化する。
"""
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Optional

from app.models.coupon import Coupon, CouponStatus
from app.models.trigger_event import TriggerEventRecord
from app.services.coupon_store import CouponStore, check_correction_status, latest_issued
from app.services.redemption_rules import RedeemOutcome, evaluate_redemption


class InMemoryCouponStore(CouponStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._doc_locks: dict[str, threading.Lock] = {}
        self._coupons: dict[str, Coupon] = {}
        self._events: dict[str, TriggerEventRecord] = {}

    def _doc_lock(self, coupon_id: str) -> threading.Lock:
        with self._lock:
            return self._doc_locks.setdefault(coupon_id, threading.Lock())

    def _all(self) -> list[Coupon]:
        with self._lock:
            return list(self._coupons.values())

    def _get(self, coupon_id: str) -> Optional[Coupon]:
        with self._lock:
            return self._coupons.get(coupon_id)

    def _put(self, coupon: Coupon):
        with self._lock:
            self._coupons[coupon.id] = coupon

    def _latest_for_owner(self, owner_id: str, status: Optional[CouponStatus]) -> Optional[Coupon]:
        return latest_issued(
            c for c in self._scan_owner(owner_id) if status is None or c.status == status
        )

    def _count_issued_since(self, owner_id: str, since: datetime) -> int:
        return sum(1 for c in self._scan_owner(owner_id) if c.issued_at >= since)

    def _stale_active(self, now: datetime) -> list[Coupon]:
        return [c for c in self._scan_status(CouponStatus.ACTIVE) if c.is_expired(now)]

    def _scan_owner(self, owner_id: str) -> list[Coupon]:
        return [c for c in self._all() if c.owner_id == owner_id]

    def _scan_status(self, status: CouponStatus) -> list[Coupon]:
        return [c for c in self._all() if c.status == status]

    def get(self, coupon_id: str) -> Optional[Coupon]:
        return self._get(coupon_id)

    def find_by_code(self, code: str) -> Optional[Coupon]:
        return next((c for c in self._all() if c.code == code), None)

    def create(self, owner_id, code, issued_at, expires_at, usage_limit) -> Coupon:
        coupon = Coupon(
            id=uuid.uuid4().hex[:20],
            code=code,
            owner_id=owner_id,
            issued_at=issued_at,
            expires_at=expires_at,
            usage_limit=usage_limit,
        )
        self._put(coupon)
        return coupon

    def mark_expired_or_consumed(self, coupon_id: str, new_status: CouponStatus) -> bool:
        check_correction_status(new_status)
        with self._doc_lock(coupon_id):
            current = self._get(coupon_id)
            if current is None or current.status != CouponStatus.ACTIVE:
                return False
            self._put(replace(current, status=new_status))
            return True

    def transactional_redeem(self, coupon_id: str, now: datetime) -> RedeemOutcome:
        with self._doc_lock(coupon_id):
            outcome = evaluate_redemption(self._get(coupon_id), now)
            if outcome.changes:
                self._put(outcome.coupon)
            return outcome

    def claim_event(self, event_id: str, at: datetime) -> bool:
        record = TriggerEventRecord(event_id=event_id, at=at)
        with self._lock:
            if record.document_id in self._events:
                return False
            self._events[record.document_id] = record
            return True

    def ping(self) -> bool:
        return True
