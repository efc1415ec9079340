"""
日志配置

全项目统一通过 `from src.core.logger import logger` 使用 loguru。
uvicorn / starlette 使用的标准库 logging 也会被转发到 loguru。
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from loguru import logger

from src.config.settings import config

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """把标准库 logging 的记录转交给 loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    初始化日志输出

    Args:
        level: 日志级别，默认取 config.log_level
        log_file: 日志文件路径，默认取 config.log_file；为空时只输出到 stderr
    """
    level = (level or config.log_level).upper()
    log_file = log_file if log_file is not None else config.log_file

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, enqueue=False, backtrace=False)
    if log_file:
        logger.add(
            log_file,
            level=level,
            format=LOG_FORMAT,
            rotation="20 MB",
            retention=5,
            encoding="utf-8",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


__all__ = ["logger", "setup_logging", "InterceptHandler"]
