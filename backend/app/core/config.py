from dataclasses import dataclass
from datetime import timedelta
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class CouponPolicy:
    """発行・消込ルール (起動時に一度だけ解決)"""

    keywords: frozenset[str]
    validity: timedelta
    cooldown: timedelta
    max_per_day: int
    usage_limit: int
    staff_pass: str
    timezone: ZoneInfo


class Settings(BaseSettings):
    """アプリケーション設定"""

    # データストア
    STORE_BACKEND: str = "firestore"  # firestore / memory
    GOOGLE_APPLICATION_CREDENTIALS_JSON: str = ""
    GOOGLE_CLOUD_PROJECT: str = ""

    # LINE
    LINE_CHANNEL_SECRET: str = ""
    LINE_CHANNEL_ACCESS_TOKEN: str = ""

    # クーポン
    COUPON_KEYWORDS: str = "クーポン"
    VALID_HOURS: int = 48
    ISSUE_COOLDOWN_MINUTES: int = 1440
    ISSUE_MAX_PER_DAY: int = 1  # 0 で無効
    USAGE_LIMIT: int = 2
    STAFF_PASS: str = ""  # 空なら照合しない
    TIMEZONE: str = "Asia/Tokyo"

    # サービス設定
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    SITE_NAME: str = "Coupon Service"
    ALLOWED_ORIGINS: str = "http://localhost:8000,http://localhost:3000"

    # 環境
    ENV: str = "development"
    DEBUG: bool = True

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def allow_unsigned_webhooks(self) -> bool:
        """LINE_CHANNEL_SECRET 未設定でも webhook を受け付けるか (ローカル開発のみ)"""
        return self.ENV == "development" and self.STORE_BACKEND.lower() == "memory"

    @property
    def keyword_set(self) -> frozenset[str]:
        return frozenset(k.strip() for k in self.COUPON_KEYWORDS.split(",") if k.strip())

    def coupon_policy(self) -> CouponPolicy:
        if self.USAGE_LIMIT < 1:
            raise ValueError("USAGE_LIMIT は1以上を指定してください")
        if self.ISSUE_MAX_PER_DAY < 0:
            raise ValueError("ISSUE_MAX_PER_DAY は0以上を指定してください")
        return CouponPolicy(
            keywords=self.keyword_set,
            validity=timedelta(hours=self.VALID_HOURS),
            cooldown=timedelta(minutes=self.ISSUE_COOLDOWN_MINUTES),
            max_per_day=self.ISSUE_MAX_PER_DAY,
            usage_limit=self.USAGE_LIMIT,
            staff_pass=self.STAFF_PASS,
            timezone=ZoneInfo(self.TIMEZONE),
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
