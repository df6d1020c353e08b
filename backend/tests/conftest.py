import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

# テストでは Firestore / LINE に接続しない
os.environ["STORE_BACKEND"] = "memory"
os.environ["LINE_CHANNEL_SECRET"] = ""
os.environ["LINE_CHANNEL_ACCESS_TOKEN"] = ""
os.environ["STAFF_PASS"] = ""

from app.core.config import CouponPolicy
from app.core.rate_limit import limiter
from app.models.coupon import Coupon
from app.services.errors import NotificationError
from app.services.issuance_service import IssuanceService
from app.services.line_service import Notifier
from app.services.memory_store import InMemoryCouponStore
from app.services.redemption_service import RedemptionService

JST = ZoneInfo("Asia/Tokyo")


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    def __init__(self):
        self.coupons: list[tuple[str, Coupon, Optional[str]]] = []
        self.texts: list[tuple[str, str, Optional[str]]] = []
        self.fail = False

    def notify(self, owner_id, coupon, reply_token=None):
        if self.fail:
            raise NotificationError("LINE送信エラー: 500", status_code=500, body="boom")
        self.coupons.append((owner_id, coupon, reply_token))

    def notify_text(self, owner_id, text, reply_token=None):
        if self.fail:
            raise NotificationError("LINE送信エラー: 500", status_code=500)
        self.texts.append((owner_id, text, reply_token))


def make_policy(**overrides) -> CouponPolicy:
    values = dict(
        keywords=frozenset({"クーポン"}),
        validity=timedelta(hours=48),
        cooldown=timedelta(minutes=1440),
        max_per_day=1,
        usage_limit=2,
        staff_pass="",
        timezone=JST,
    )
    values.update(overrides)
    return CouponPolicy(**values)


@pytest.fixture
def clock() -> FakeClock:
    # 2026-10-17 12:00 JST
    return FakeClock(datetime(2026, 10, 17, 3, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryCouponStore:
    return InMemoryCouponStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def policy() -> CouponPolicy:
    return make_policy()


@pytest.fixture
def issuance(store, notifier, policy, clock) -> IssuanceService:
    return IssuanceService(store, notifier, policy, clock=clock)


@pytest.fixture
def redemption(store, policy, clock) -> RedemptionService:
    return RedemptionService(store, policy, clock=clock)


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    # slowapi のメモリストレージはプロセス共有
    limiter.reset()
    yield
    limiter.reset()
