"""日志

所有模块通过 get_logger(__name__) 获取日志器：Rich 控制台输出，级别取自 LOG_LEVEL，
设置 LOG_FILE 时同时写入文件。
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

# 全局控制台实例
console = Console()

FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"


def get_log_level() -> int:
    """LOG_LEVEL 无法识别时退回 INFO"""
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = get_log_level()
    logger.setLevel(level)

    rich_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    rich_handler.setLevel(level)
    rich_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(rich_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
