# app/main.py
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.errors import register_error_handlers
from app.api.v1.router import api_router
from app.db.session import engine
from app.services.hash_pool import lifespan_hash_pool  # lifespan（雜湊 thread pool）

# Monitoring
import sentry_sdk
from prometheus_fastapi_instrumentator import Instrumentator

logger = setup_logging(settings.LOG_LEVEL)
log = logging.getLogger(__name__)


def _validate_secrets() -> None:
    """
    啟動前安全檢查：JWT_SECRET 一定要有；
    在 prod/staging/preview 等環境時，不允許使用過短的金鑰。
    """
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in the environment")

    env = (settings.ENV or "").lower()
    if env in {"prod", "production", "staging", "preview"} and len(settings.JWT_SECRET) < 32:
        raise RuntimeError(
            f"Insecure config for JWT_SECRET in ENV={settings.ENV}. "
            "Please set a key of at least 32 characters."
        )


def create_app() -> FastAPI:
    # 基本安全檢查
    _validate_secrets()

    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan_hash_pool,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Sentry 初始化（若 .env/SENTRY_DSN 未設定就略過）----
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            environment=settings.SENTRY_ENV,
        )

    # ---- Prometheus /metrics ----
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # 統一錯誤處理
    register_error_handlers(app)

    # === API 路由 ===
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # 健康檢查（root & ops）
    @app.get("/", summary="Root")
    async def root():
        return {"app": settings.APP_NAME, "env": settings.ENV}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["ops"])
    async def readyz():
        # DB 探針：連不上就回 503
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            log.warning("Readiness probe failed: %s", exc)
            return JSONResponse(status_code=503, content={"ready": False})
        return {"ready": True}

    log.info("Application initialized (env=%s)", settings.ENV)
    return app


# Uvicorn 進入點
app = create_app()
