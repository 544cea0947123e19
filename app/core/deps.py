# app/core/deps.py
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import get_db
from app.models.users import User
from app.repositories.users import UserRepository
from app.services.identity import IdentityService


# Bearer header 解析：沒帶 / 不是 "Bearer xxx" 格式 -> 401，不會進到 service
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_PREFIX}/auth/sign-in",
    auto_error=True,
)


def get_user_repository(db: AsyncSession = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


def get_identity_service(repo: UserRepository = Depends(get_user_repository)) -> IdentityService:
    # JWT_SECRET 已在 create_app() 啟動時檢查過
    return IdentityService(
        repo,
        secret=settings.JWT_SECRET,
        ttl_seconds=settings.JWT_EXPIRE_SECONDS,
    )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    service: IdentityService = Depends(get_identity_service),
) -> User:
    """
    從 Bearer Access Token 解析目前使用者：
      1️⃣ 驗證簽章與 exp
      2️⃣ 依 sub 查 DB 取得 User
      3️⃣ 比對 token_version，確保未被新登入 / 改密碼作廢
    任一失敗 -> InvalidToken（401）
    """
    return await service.current_user(token)
