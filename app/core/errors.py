# app/core/errors.py
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from loguru import logger
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException


# === 領域錯誤 ===
class AppError(Exception):
    """所有業務錯誤的基底；status_code/detail 直接對應到 HTTP 回應。"""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class ValidationError(AppError):
    """輸入格式或政策不符（使用者可自行修正）"""
    status_code = 400
    detail = "Invalid input"


class ConflictError(AppError):
    status_code = 409
    detail = "Already in use"


class NotFoundError(AppError):
    status_code = 404
    detail = "Not found"


class AuthError(AppError):
    status_code = 401
    detail = "Not authenticated"


class InvalidCredentials(AuthError):
    # 帳號不存在與密碼錯誤共用同一訊息，避免帳號探測
    detail = "Invalid username/email or password"


class InvalidToken(AuthError):
    detail = "Invalid or expired token"


class TokenError(AppError):
    """Token codec 層級的錯誤（不查 DB）"""
    status_code = 401
    detail = "Invalid token"


class TokenExpiredError(TokenError):
    detail = "Token has expired"


class TokenInvalidError(TokenError):
    detail = "Invalid token"


class HashingError(AppError):
    """密碼雜湊內部失敗：不可由使用者修正，回應時隱藏細節"""
    status_code = 500


class StoreUnavailableError(AppError):
    status_code = 503
    detail = "Service unavailable"


_GENERIC_INTERNAL = "Internal server error"
_GENERIC_UNAVAILABLE = "Service unavailable"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        # 統一輸出格式
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        # 客製化，但保持資訊節制
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(AppError)
    async def app_exc_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            # 內部錯誤：log 完整細節，對外只給通用訊息
            logger.opt(exception=exc).error(
                "{} on {} {}", type(exc).__name__, request.method, request.url.path
            )
            generic = _GENERIC_UNAVAILABLE if exc.status_code == 503 else _GENERIC_INTERNAL
            return JSONResponse(status_code=exc.status_code, content={"detail": generic})

        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )

    @app.exception_handler(OperationalError)
    @app.exception_handler(InterfaceError)
    @app.exception_handler(PoolTimeoutError)
    async def store_unavailable_handler(request: Request, exc: SQLAlchemyError):
        logger.opt(exception=exc).error("Store unavailable on {} {}", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"detail": _GENERIC_UNAVAILABLE})

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError):
        logger.opt(exception=exc).error("Store error on {} {}", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": _GENERIC_INTERNAL})

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        # 小強化：避免洩露伺服器細節
        resp = await call_next(request)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        return resp
