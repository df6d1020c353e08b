"""消込API (スタッフ用)"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.core.rate_limit import limiter, REDEEM_RATE_LIMIT, COUPON_LOOKUP_RATE_LIMIT
from app.routers.deps import get_services
from app.schemas.coupon import CouponInfo, RedeemRequest, RedeemResponse
from app.services.code_generator import normalize_code
from app.services.container import Services
from app.services.redemption_service import RedeemResult, RedeemStatus
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["coupons"])


@router.post("/redeem", response_model=RedeemResponse)
@limiter.limit(REDEEM_RATE_LIMIT)
async def redeem_coupon(
    request: Request,
    data: RedeemRequest,
    services: Services = Depends(get_services),
):
    """クーポンを1回分消込"""
    try:
        result = await run_in_threadpool(services.redemption.redeem, data.code, data.staff_pass)
    except Exception as e:
        logger.error(f"消込処理エラー: code={data.code} - {e}", exc_info=True)
        result = RedeemResult(RedeemStatus.ERROR, normalize_code(data.code), reason="PROCESSING_FAILED")

    return JSONResponse(
        status_code=result.http_status,
        content=RedeemResponse.from_result(result).model_dump(by_alias=True),
    )


@router.get("/coupons/{code}", response_model=CouponInfo)
@limiter.limit(COUPON_LOOKUP_RATE_LIMIT)
async def get_coupon(
    request: Request,
    code: str,
    services: Services = Depends(get_services),
):
    """クーポン状態の確認 (消込画面の表示用)"""
    coupon = await run_in_threadpool(services.store.find_by_code, normalize_code(code))
    if coupon is None:
        raise HTTPException(status_code=404, detail="クーポンが見つかりません")
    return CouponInfo.from_coupon(coupon, datetime.now(timezone.utc))
