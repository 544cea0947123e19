# app/services/hash_pool.py
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Optional, TypeVar

from fastapi import FastAPI

from app.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# argon2 是刻意設計成慢又吃記憶體的運算，不能跑在 event loop 上；
# 用固定大小的 pool 限制同時雜湊的數量（=記憶體上限）
_executor: Optional[ThreadPoolExecutor] = None


def _get_executor() -> ThreadPoolExecutor:
    """Lazy 初始化雜湊專用 thread pool。"""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=max(1, settings.HASH_WORKERS),
            thread_name_prefix="pwhash",
        )
        logger.info("Hash pool started with %d workers", settings.HASH_WORKERS)
    return _executor


async def run_blocking(fn: Callable[..., T], *args: Any) -> T:
    """在雜湊 pool 中執行 fn(*args)；fn 拋出的例外原樣傳回呼叫端。"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_executor(), functools.partial(fn, *args))


def shutdown_pool() -> None:
    global _executor
    if _executor is not None:
        _executor.shutdown(wait=False, cancel_futures=True)
        _executor = None
        logger.info("Hash pool shutdown")


@asynccontextmanager
async def lifespan_hash_pool(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan：預先建立雜湊 pool，關機時收掉。
    需接受 app 參數（FastAPI 會注入），否則會出現 TypeError。
    """
    _get_executor()
    try:
        yield
    finally:
        shutdown_pool()
