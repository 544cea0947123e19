# tests/conftest.py
import asyncio
import os
import uuid

import pytest
from httpx import AsyncClient, ASGITransport

# ---- 測試期環境變數（先於 app 載入）----
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef0123456789abcdef")
# argon2 調到最便宜，測試才不會慢
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")
os.environ.setdefault("HASH_WORKERS", "2")

from app.main import app  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.db.session import AsyncSessionLocal, engine  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.models import roles, users  # noqa: E402,F401  確保所有表都註冊到 metadata
from app.repositories.users import UserRepository  # noqa: E402
from app.services.identity import IdentityService  # noqa: E402

STRONG_PASSWORD = "Valid1Pass!"


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    """測試前重建 schema，測試後 drop_all（用 asyncio.run 避免事件圈衝突）。"""
    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        # 連線不要跨 event loop 重用
        await engine.dispose()

    async def drop_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(init_models())
    yield
    asyncio.run(drop_models())


@pytest.fixture(scope="session")
def anyio_backend():
    """讓 pytest 使用 asyncio event loop。"""
    return "asyncio"


@pytest.fixture
async def client():
    """使用 ASGITransport 直接掛載 app，不需啟動伺服器。"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await engine.dispose()


@pytest.fixture
async def db():
    session = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest.fixture
def repo(db) -> UserRepository:
    return UserRepository(db)


@pytest.fixture
def service(repo) -> IdentityService:
    return IdentityService(repo, secret=settings.JWT_SECRET, ttl_seconds=settings.JWT_EXPIRE_SECONDS)


@pytest.fixture
def new_user():
    """產生不重複的註冊資料（DB 在整個 session 共用）。"""
    def _make(prefix: str = "user", password: str = STRONG_PASSWORD) -> dict:
        suffix = uuid.uuid4().hex[:10]
        return {
            "first_name": "Jane",
            "last_name": "Doe",
            "username": f"{prefix}_{suffix}",
            "email": f"{prefix}_{suffix}@example.com",
            "password": password,
        }
    return _make
