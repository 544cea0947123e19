# app/core/logging.py
import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """把 stdlib logging（uvicorn / sqlalchemy / 各模組 logger）導到 loguru。"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 往上找到真正呼叫 logging 的 frame，讓 loguru 顯示正確位置
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO"):
    logger.remove()
    logger.add(sys.stdout, level=level.upper(),
               backtrace=True, diagnose=False,
               format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level}</level> | "
                      "{name}:{line} | {message}")
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    return logger
