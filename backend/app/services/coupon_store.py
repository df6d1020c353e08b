"""クーポンストア: coupons / events コレクションの唯一の書き込み経路

オーナー単位の並び替え・範囲クエリは Firestore の複合インデックスを必要とする。
インデックスが未作成 (FailedPrecondition) の場合はオーナーの全件を取得し、
メモリ上で同じ条件の絞り込み・並び替えを行う。
"""
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar

from google.api_core.exceptions import FailedPrecondition
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from app.models.coupon import COUPONS_COLLECTION, Coupon, CouponStatus
from app.models.trigger_event import EVENTS_COLLECTION, TriggerEventRecord
from app.services.errors import IndexUnavailableError
from app.services.redemption_rules import RedeemOutcome, evaluate_redemption
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def latest_issued(coupons: Iterable[Coupon]) -> Optional[Coupon]:
    """発行日時が最も新しいクーポン"""
    ordered = sorted(coupons, key=lambda c: c.issued_at, reverse=True)
    return ordered[0] if ordered else None


class CouponStore(ABC):
    """ストア共通インターフェース + インデックス未作成時のフォールバック"""

    # --- オーナー単位の問い合わせ (フォールバック付き) ---

    def find_active_for_owner(self, owner_id: str) -> Optional[Coupon]:
        return self._with_fallback(
            "find_active_for_owner",
            lambda: self._latest_for_owner(owner_id, CouponStatus.ACTIVE),
            lambda: latest_issued(
                c for c in self._scan_owner(owner_id) if c.status == CouponStatus.ACTIVE
            ),
        )

    def find_most_recent_for_owner(self, owner_id: str) -> Optional[Coupon]:
        return self._with_fallback(
            "find_most_recent_for_owner",
            lambda: self._latest_for_owner(owner_id, None),
            lambda: latest_issued(self._scan_owner(owner_id)),
        )

    def count_issued_since(self, owner_id: str, since: datetime) -> int:
        return self._with_fallback(
            "count_issued_since",
            lambda: self._count_issued_since(owner_id, since),
            lambda: sum(1 for c in self._scan_owner(owner_id) if c.issued_at >= since),
        )

    def find_stale_active(self, now: datetime) -> list[Coupon]:
        """期限切れのまま active になっているクーポン"""
        return self._with_fallback(
            "find_stale_active",
            lambda: self._stale_active(now),
            lambda: [
                c for c in self._scan_status(CouponStatus.ACTIVE) if c.is_expired(now)
            ],
        )

    def _with_fallback(self, label: str, indexed: Callable[[], T], scan: Callable[[], T]) -> T:
        try:
            return indexed()
        except IndexUnavailableError as e:
            logger.warning(f"インデックス未作成のため全件スキャンで代替: {label} - {e}")
            return scan()

    # --- バックエンド実装 ---

    @abstractmethod
    def _latest_for_owner(self, owner_id: str, status: Optional[CouponStatus]) -> Optional[Coupon]:
        """インデックス付きクエリ。インデックスが無ければ IndexUnavailableError"""

    @abstractmethod
    def _count_issued_since(self, owner_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    def _stale_active(self, now: datetime) -> list[Coupon]:
        ...

    @abstractmethod
    def _scan_owner(self, owner_id: str) -> list[Coupon]:
        """オーナーの全クーポン (順序不定)"""

    @abstractmethod
    def _scan_status(self, status: CouponStatus) -> list[Coupon]:
        ...

    @abstractmethod
    def find_by_code(self, code: str) -> Optional[Coupon]:
        """正規化済みコードで完全一致検索"""

    @abstractmethod
    def create(
        self,
        owner_id: str,
        code: str,
        issued_at: datetime,
        expires_at: datetime,
        usage_limit: int,
    ) -> Coupon:
        ...

    @abstractmethod
    def mark_expired_or_consumed(self, coupon_id: str, new_status: CouponStatus) -> bool:
        """active のままの場合のみステータスを補正。補正したら True"""

    @abstractmethod
    def transactional_redeem(self, coupon_id: str, now: datetime) -> RedeemOutcome:
        ...

    @abstractmethod
    def claim_event(self, event_id: str, at: datetime) -> bool:
        """未処理なら記録して True、処理済みなら False"""

    @abstractmethod
    def ping(self) -> bool:
        ...


def check_correction_status(new_status: CouponStatus):
    if new_status not in (CouponStatus.EXPIRED, CouponStatus.CONSUMED):
        raise ValueError(f"補正できないステータス: {new_status}")


def _is_index_error(e: Exception) -> bool:
    return isinstance(e, FailedPrecondition) and "index" in str(e).lower()


@firestore.transactional
def _redeem_in_transaction(transaction, ref, now: datetime) -> RedeemOutcome:
    snapshot = ref.get(transaction=transaction)
    coupon = Coupon.from_document(snapshot.id, snapshot.to_dict()) if snapshot.exists else None
    outcome = evaluate_redemption(coupon, now)
    if outcome.changes:
        transaction.update(ref, outcome.changes)
    return outcome


@firestore.transactional
def _correct_status_in_transaction(transaction, ref, new_status: CouponStatus) -> bool:
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        return False
    if snapshot.to_dict().get("status") != CouponStatus.ACTIVE.value:
        return False
    transaction.update(ref, {"status": new_status.value})
    return True


class FirestoreCouponStore(CouponStore):
    """Firestore 実装"""

    def __init__(self, db: firestore.Client):
        self.db = db

    @property
    def coupons(self):
        return self.db.collection(COUPONS_COLLECTION)

    def _owner_query(self, owner_id: str):
        return self.coupons.where(filter=FieldFilter("userId", "==", owner_id))

    def _run(self, query) -> list[Coupon]:
        try:
            return [Coupon.from_document(doc.id, doc.to_dict()) for doc in query.stream()]
        except FailedPrecondition as e:
            if _is_index_error(e):
                raise IndexUnavailableError(str(e)) from e
            raise

    def _latest_for_owner(self, owner_id: str, status: Optional[CouponStatus]) -> Optional[Coupon]:
        query = self._owner_query(owner_id)
        if status is not None:
            query = query.where(filter=FieldFilter("status", "==", status.value))
        query = query.order_by("issuedAt", direction=firestore.Query.DESCENDING).limit(1)
        docs = self._run(query)
        return docs[0] if docs else None

    def _count_issued_since(self, owner_id: str, since: datetime) -> int:
        query = self._owner_query(owner_id).where(filter=FieldFilter("issuedAt", ">=", since))
        return len(self._run(query))

    def _stale_active(self, now: datetime) -> list[Coupon]:
        query = (
            self.coupons
            .where(filter=FieldFilter("status", "==", CouponStatus.ACTIVE.value))
            .where(filter=FieldFilter("expiresAt", "<=", now))
        )
        return self._run(query)

    def _scan_owner(self, owner_id: str) -> list[Coupon]:
        return self._run(self._owner_query(owner_id))

    def _scan_status(self, status: CouponStatus) -> list[Coupon]:
        return self._run(self.coupons.where(filter=FieldFilter("status", "==", status.value)))

    def find_by_code(self, code: str) -> Optional[Coupon]:
        docs = self._run(self.coupons.where(filter=FieldFilter("code", "==", code)).limit(1))
        return docs[0] if docs else None

    def create(self, owner_id, code, issued_at, expires_at, usage_limit) -> Coupon:
        coupon = Coupon(
            id="",
            code=code,
            owner_id=owner_id,
            issued_at=issued_at,
            expires_at=expires_at,
            usage_limit=usage_limit,
        )
        _, ref = self.coupons.add(coupon.to_document())
        logger.info(f"クーポン発行: id={ref.id}, user={owner_id}")
        return replace(coupon, id=ref.id)

    def mark_expired_or_consumed(self, coupon_id: str, new_status: CouponStatus) -> bool:
        check_correction_status(new_status)
        ref = self.coupons.document(coupon_id)
        return _correct_status_in_transaction(self.db.transaction(), ref, new_status)

    def transactional_redeem(self, coupon_id: str, now: datetime) -> RedeemOutcome:
        ref = self.coupons.document(coupon_id)
        return _redeem_in_transaction(self.db.transaction(), ref, now)

    def claim_event(self, event_id: str, at: datetime) -> bool:
        record = TriggerEventRecord(event_id=event_id, at=at)
        ref = self.db.collection(EVENTS_COLLECTION).document(record.document_id)
        if ref.get().exists:
            return False
        ref.set(record.to_document())
        return True

    def ping(self) -> bool:
        try:
            list(self.coupons.limit(1).stream())
            return True
        except Exception as e:
            logger.warning(f"Firestore疎通確認失敗: {e}")
            return False
