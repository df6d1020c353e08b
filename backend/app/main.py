from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.rate_limit import limiter, rate_limit_exceeded_handler
from app.routers import health, redeem, webhooks_line
from app.services.container import build_services

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションライフサイクル管理"""
    setup_logging(debug=settings.DEBUG)
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    logger.info(f"アプリケーション起動: store={type(app.state.services.store).__name__}")
    yield
    close = getattr(app.state.services.notifier, "close", None)
    if close:
        close()
    logger.info("アプリケーション終了")


app = FastAPI(
    title=settings.SITE_NAME,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)
app.state.settings = settings
app.state.services = None

# レート制限設定
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
# default_limits はミドルウェア経由で適用 (LINE webhook は除外)
app.add_middleware(SlowAPIMiddleware)

# --- バリデーションエラー日本語化 ---
_FIELD_JA = {
    "code": "クーポンコード",
    "staff_pass": "スタッフパス",
    "staffPass": "スタッフパス",
}


def _translate_error(err: dict) -> str:
    t = err.get("type", "")
    loc = err.get("loc", [])
    field = str(loc[-1]) if loc else ""
    fj = _FIELD_JA.get(field, field)

    if t == "missing":
        return f"{fj}は必須です"
    if t == "string_type":
        return f"{fj}は文字列で入力してください"
    if t in ("json_invalid", "model_attributes_type", "dict_type"):
        return "リクエスト形式が不正です"
    return f"{fj}: 入力値が不正です"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [_translate_error(e) for e in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": "、".join(messages)})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ルーター登録
app.include_router(health.router)
app.include_router(webhooks_line.router)
app.include_router(redeem.router)
