# app/services/identity.py
"""
帳號核心流程：註冊、登入、驗證 token、修改個資、修改密碼。

撤銷機制：token 內帶 token_version，驗證時必須等於 DB 目前的值。
登入與改密碼都會換一個新的隨機版本號，所以之前簽出去的 token 全部失效；
修改個資不換版本號，既有 session 繼續有效。
"""
import secrets
from datetime import datetime, timezone
from typing import List, Mapping, Optional, Tuple

from loguru import logger

from app.core.errors import (
    ConflictError,
    InvalidCredentials,
    InvalidToken,
    NotFoundError,
    TokenError,
    TokenExpiredError,
    ValidationError,
)
from app.core.security import (
    decode_token,
    hash_password,
    issue_token,
    password_policy_violation,
    verify_password,
)
from app.models.users import User
from app.repositories.users import EMAIL_IN_USE, PROFILE_FIELDS, USERNAME_IN_USE, UserRepository
from app.schemas.auth import TokenRejection, TokenVerification
from app.schemas.user import UserSummary
from app.services.hash_pool import run_blocking

# 新版本號範圍 [1, 2**31 - 1]，對應 DB 的 32-bit integer
MAX_TOKEN_VERSION = 2**31 - 1

MIN_FIELD_LENGTH = 3
# 與 users 表欄位長度一致
MAX_FIELD_LENGTHS = {"username": 40, "first_name": 100, "last_name": 100, "email": 255}
_FIELD_LABELS = {
    "username": "Username",
    "first_name": "First name",
    "last_name": "Last name",
    "email": "Email",
}


def new_token_version(current: Optional[int] = None) -> int:
    """隨機產生新版本號，保證與目前的值不同。"""
    while True:
        version = secrets.randbelow(MAX_TOKEN_VERSION) + 1
        if version != current:
            return version


def validate_field_lengths(fields: Mapping[str, str]) -> None:
    """依固定順序檢查各欄位長度，第一個不合格的欄位拋 ValidationError。"""
    for name in ("username", "first_name", "last_name", "email"):
        if name not in fields:
            continue
        value = fields[name]
        label = _FIELD_LABELS[name]
        if len(value) < MIN_FIELD_LENGTH:
            raise ValidationError(f"{label} must be at least {MIN_FIELD_LENGTH} characters long")
        if len(value) > MAX_FIELD_LENGTHS[name]:
            raise ValidationError(f"{label} must be at most {MAX_FIELD_LENGTHS[name]} characters long")


class IdentityService:
    def __init__(self, repo: UserRepository, secret: str, ttl_seconds: Optional[int] = None) -> None:
        self.repo = repo
        self.secret = secret
        self.ttl_seconds = ttl_seconds

    # === 註冊 ===
    async def register(
        self,
        first_name: str,
        last_name: str,
        username: str,
        email: str,
        password: str,
    ) -> Tuple[User, str]:
        validate_field_lengths(
            {"username": username, "first_name": first_name, "last_name": last_name, "email": email}
        )

        # 先查一次給出明確訊息；真正的防線是 DB unique constraint（見 repo.insert）
        if await self.repo.email_exists(email):
            raise ConflictError(EMAIL_IN_USE)
        if await self.repo.username_exists(username):
            raise ConflictError(USERNAME_IN_USE)
        # 帳號/email 都能登入，不能和別人的另一欄撞名
        clash = await self.repo.cross_identifier_conflict(username=username, email=email)
        if clash:
            raise ConflictError(clash)

        password_hash = await run_blocking(hash_password, password)

        user = await self.repo.insert(
            User(
                first_name=first_name,
                last_name=last_name,
                username=username,
                email=email,
                password_hash=password_hash,
                token_version=0,
            )
        )
        logger.info("Registered user {} ({})", user.username, user.id)
        return user, issue_token(user, self.secret, self.ttl_seconds)

    # === 登入 ===
    async def sign_in(self, username_or_email: str, password: str) -> Tuple[User, str]:
        try:
            user = await self.repo.find_by_username_or_email(username_or_email)
        except NotFoundError:
            logger.info("Sign-in failed for {!r}: unknown identifier", username_or_email)
            raise InvalidCredentials()

        if not await run_blocking(verify_password, password, user.password_hash):
            logger.info("Sign-in failed for {!r}: wrong password", username_or_email)
            raise InvalidCredentials()

        # 換新版本號：同時輪替本次 session 並讓舊 token 全部失效
        user = await self.repo.bump_token_version(
            user.id,
            new_token_version(user.token_version),
            last_login_at=datetime.now(timezone.utc),
        )
        logger.info("User {} signed in", user.id)
        return user, issue_token(user, self.secret, self.ttl_seconds)

    # === 驗證 token（不拋錯，永遠回傳結構化結果） ===
    async def verify_token(self, token: str) -> TokenVerification:
        try:
            claims = decode_token(token, self.secret)
        except TokenExpiredError:
            return TokenVerification(valid=False, reason=TokenRejection.EXPIRED)
        except TokenError:
            return TokenVerification(valid=False, reason=TokenRejection.INVALID)

        try:
            user = await self.repo.find_by_id(claims.sub)
        except NotFoundError:
            return TokenVerification(valid=False, reason=TokenRejection.USER_NOT_FOUND)

        if claims.token_version != user.token_version:
            return TokenVerification(valid=False, reason=TokenRejection.TOKEN_VERSION_MISMATCH)
        return TokenVerification(valid=True)

    async def current_user(self, token: str) -> User:
        """Bearer 驗證：解碼 + 使用者存在 + 版本一致，任何一項失敗都是 InvalidToken。"""
        return await self._authenticate(token)

    # === 修改個資（不換 token_version） ===
    async def update_profile(self, token: str, fields: Mapping[str, Optional[str]]) -> User:
        user = await self._authenticate(token)

        changes = {k: v for k, v in fields.items() if k in PROFILE_FIELDS and v is not None}
        if not changes:
            return user

        if "email" in changes and await self.repo.email_exists(changes["email"], exclude_id=user.id):
            raise ConflictError(EMAIL_IN_USE)
        if "username" in changes and await self.repo.username_exists(changes["username"], exclude_id=user.id):
            raise ConflictError(USERNAME_IN_USE)
        clash = await self.repo.cross_identifier_conflict(
            username=changes.get("username"), email=changes.get("email"), exclude_id=user.id
        )
        if clash:
            raise ConflictError(clash)

        validate_field_lengths(changes)

        updated = await self.repo.update_profile_fields(user.id, changes)
        logger.info("User {} updated profile fields: {}", user.id, sorted(changes))
        return updated

    # === 修改密碼（換 token_version，所有 session 失效） ===
    async def update_password(self, token: str, old_password: str, new_password: str) -> None:
        user = await self._authenticate(token)

        if not await run_blocking(verify_password, old_password, user.password_hash):
            raise InvalidCredentials()

        if await run_blocking(verify_password, new_password, user.password_hash):
            raise ValidationError("New password must be different from the current password")

        violation = password_policy_violation(new_password)
        if violation:
            raise ValidationError(violation)

        new_hash = await run_blocking(hash_password, new_password)
        await self.repo.update_password(user.id, new_hash, new_token_version(user.token_version))
        logger.info("User {} changed password; all sessions invalidated", user.id)

    async def list_users(self) -> List[UserSummary]:
        return await self.repo.list_with_roles()

    async def _authenticate(self, token: str) -> User:
        try:
            claims = decode_token(token, self.secret)
        except TokenError as exc:
            raise InvalidToken() from exc

        try:
            user = await self.repo.find_by_id(claims.sub)
        except NotFoundError as exc:
            raise InvalidToken() from exc

        # 登入或改密碼後，舊 token 的版本就對不上
        if claims.token_version != user.token_version:
            raise InvalidToken()
        return user
