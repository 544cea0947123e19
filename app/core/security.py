# app/core/security.py
import string
from datetime import datetime, timezone
from typing import Any, Optional

import pydantic
from jose import jwt, JWTError
from passlib.context import CryptContext

from app.core.config import settings
from app.core.errors import HashingError, TokenExpiredError, TokenInvalidError
from app.schemas.auth import SessionClaims

# === Password Hashing ===
# argon2 輸出為 PHC 字串（$argon2id$v=19$m=...,t=...,p=...$salt$digest），
# 參數寫在 hash 裡，日後調整成本不需要 migration
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__time_cost=settings.ARGON2_TIME_COST,
    argon2__memory_cost=settings.ARGON2_MEMORY_COST,
    argon2__parallelism=settings.ARGON2_PARALLELISM,
)

PASSWORD_MIN_LENGTH = 8
PASSWORD_SPECIAL_CHARS = "!@#$%^&*()-_=+[]{};:'\",.<>/?\\|`~"


def hash_password(plain: str) -> str:
    """每次呼叫產生新的 salt；任何內部失敗都轉成 HashingError。"""
    try:
        return pwd_context.hash(plain)
    except Exception as exc:
        raise HashingError(f"Password hashing failed: {exc}") from exc


def verify_password(plain: str, password_hash: str) -> bool:
    """密碼不符回傳 False；hash 字串無法解析時拋 HashingError。"""
    try:
        return pwd_context.verify(plain, password_hash)
    except (ValueError, TypeError) as exc:
        raise HashingError(f"Malformed password hash: {exc}") from exc


def password_policy_violation(password: str) -> Optional[str]:
    """依序檢查密碼規則，回傳第一條沒通過的說明；全部通過回傳 None。"""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    if not any(c in string.ascii_uppercase for c in password):
        return "Password must contain at least one uppercase letter"
    if not any(c in string.ascii_lowercase for c in password):
        return "Password must contain at least one lowercase letter"
    if not any(c in string.digits for c in password):
        return "Password must contain at least one digit"
    if not any(c in PASSWORD_SPECIAL_CHARS for c in password):
        return f"Password must contain at least one special character ({PASSWORD_SPECIAL_CHARS})"
    return None


# === JWT Helpers ===
def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def issue_token(user: Any, secret: str, ttl_seconds: Optional[int] = None) -> str:
    """
    簽發 session token。user 只需要有 id / username / token_version 三個屬性。
    exp = 現在 + ttl（秒），ttl 未指定時用 JWT_EXPIRE_SECONDS。
    """
    ttl = settings.JWT_EXPIRE_SECONDS if ttl_seconds is None else ttl_seconds
    now = _now_ts()
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "token_version": int(user.token_version),
        "iat": now,
        "exp": now + int(ttl),
    }
    return jwt.encode(claims, secret, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> SessionClaims:
    """
    驗簽並解出 claims，不查 DB：
      - 簽章錯誤 / 格式錯誤 / 金鑰不同 / claims 缺漏 -> TokenInvalidError
      - 現在時間 >= exp -> TokenExpiredError
    """
    try:
        # exp 自己比對（>= 即過期），jose 的判斷是 >
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
        claims = SessionClaims.model_validate(payload)
    except (JWTError, pydantic.ValidationError, AttributeError, TypeError) as exc:
        raise TokenInvalidError() from exc

    if _now_ts() >= claims.exp:
        raise TokenExpiredError()
    return claims
