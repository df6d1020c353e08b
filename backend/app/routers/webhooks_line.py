"""LINE Webhook ルーター"""
import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings
from app.core.rate_limit import limiter
from app.routers.deps import get_services, get_settings
from app.schemas.line import parse_trigger_events
from app.services.container import Services
from app.services.line_service import verify_signature
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhook")
@router.post("/api/webhooks/line")
@limiter.exempt
async def line_webhook(
    request: Request,
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """LINE Webhook エンドポイント (署名検証、イベントごとに並行処理)"""
    payload = await request.body()

    if settings.LINE_CHANNEL_SECRET:
        signature = request.headers.get("x-line-signature", "")
        if not verify_signature(payload, signature, settings.LINE_CHANNEL_SECRET):
            logger.error("LINE webhook署名検証失敗")
            raise HTTPException(status_code=401, detail="Invalid signature")
    elif not settings.allow_unsigned_webhooks:
        logger.error("LINE_CHANNEL_SECRET 未設定のため webhook を拒否")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        body = json.loads(payload or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    events = parse_trigger_events(body)
    results = await asyncio.gather(
        *(run_in_threadpool(services.issuance.handle_trigger, e) for e in events),
        return_exceptions=True,
    )

    response = []
    failed = False
    for event, result in zip(events, results):
        if isinstance(result, Exception):
            failed = True
            logger.error(
                f"LINE webhook処理エラー: event={event.event_id}, user={event.owner_id} - {result}",
                exc_info=result,
            )
            response.append({"event_id": event.event_id, "outcome": "error"})
        else:
            response.append({
                "event_id": event.event_id,
                "outcome": result.outcome.value,
                "code": result.coupon.code if result.coupon else None,
            })

    if failed:
        return JSONResponse(status_code=500, content={"detail": "processing failed", "results": response})
    return response
