"""ストア・通知・サービスの組み立て (起動時に一度だけ)"""
from dataclasses import dataclass

from app.core.config import Settings
from app.services.coupon_store import CouponStore, FirestoreCouponStore
from app.services.issuance_service import IssuanceService
from app.services.line_service import LineNotifier, Notifier
from app.services.memory_store import InMemoryCouponStore
from app.services.redemption_service import RedemptionService
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    store: CouponStore
    notifier: Notifier
    issuance: IssuanceService
    redemption: RedemptionService


def build_store(settings: Settings) -> CouponStore:
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        logger.warning("インメモリストアで起動 (データは永続化されません)")
        return InMemoryCouponStore()
    if backend == "firestore":
        from app.core.firestore import client_from_settings
        return FirestoreCouponStore(client_from_settings(settings))
    raise ValueError(f"未対応の STORE_BACKEND: {settings.STORE_BACKEND}")


def build_services(settings: Settings, store: CouponStore = None, notifier: Notifier = None) -> Services:
    policy = settings.coupon_policy()
    store = store or build_store(settings)
    notifier = notifier or LineNotifier(settings.LINE_CHANNEL_ACCESS_TOKEN, settings.PUBLIC_BASE_URL)
    return Services(
        store=store,
        notifier=notifier,
        issuance=IssuanceService(store, notifier, policy),
        redemption=RedemptionService(store, policy),
    )
