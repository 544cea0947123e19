# app/db/session.py
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from app.core.config import settings

# ---- Engine ----
DATABASE_URL = settings.DATABASE_URL
echo_flag = str(getattr(settings, "DB_ECHO", "false")).lower() in {"1", "true", "yes"}

engine_kwargs: Dict[str, Any] = {"echo": echo_flag, "pool_pre_ping": True}
if not DATABASE_URL.startswith("sqlite"):
    # 連線池上限：池滿時 acquire 逾時會拋 TimeoutError -> 503
    engine_kwargs.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=3600,
    )

engine = create_async_engine(DATABASE_URL, **engine_kwargs)

# ---- Session factory ----
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---- Dependency ----
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 依賴：每個 request 一個 AsyncSession。
    Repository 自行 commit；這裡只在例外時 rollback，結束時一定關閉。
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
