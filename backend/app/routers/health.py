from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from app.routers.deps import get_services
from app.services.container import Services

router = APIRouter()


@router.get("/health")
@router.get("/api/health")
async def health_check(services: Services = Depends(get_services)):
    """ヘルスチェックエンドポイント"""
    store_ok = await run_in_threadpool(services.store.ping)

    return {
        "status": "ok" if store_ok else "degraded",
        "store": "connected" if store_ok else "disconnected",
    }
