"""
统一日志系统 - 基于 loguru

日志级别策略:
- DEBUG: 请求/响应详情（apiKey 已脱敏）、轮询中被忽略的状态
- INFO:  任务提交、状态变更、任务完成、取消成功
- WARNING: 临时网络错误重试、慢响应、远端取消失败、任务失败

输出策略:
- 控制台: 级别由 LOG_LEVEL 控制，容器内使用无颜色的完整时间格式
- 文件: 仅在设置 LOG_FILE_DIR 时启用（LOG_DISABLE_FILE=true 可强制关闭），
  runninghub.log 记录全部级别，runninghub_error.log 只记录 WARNING 以上

作为库嵌入宿主应用时，宿主可以再次调用 configure_logging() 调整级别。

使用方式:
    from src.core.logger import logger

    logger.info("[RunningHub] 任务提交成功: taskId={}", task_id)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

IS_DOCKER = os.path.exists("/.dockerenv") or (
    os.environ.get("DOCKER_CONTAINER", "false").lower() == "true"
)

_CONSOLE_FORMATS = {
    "dev": "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
    "prod": "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
}

_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"
)

# 与本库的请求日志重复
_NOISY_STDLIB_LOGGERS = ("httpx", "httpcore")


def _file_sinks_enabled(log_dir: str) -> bool:
    if not log_dir:
        return False
    return os.getenv("LOG_DISABLE_FILE", "false").lower() != "true"


def configure_logging(level: str | None = None, log_dir: str | None = None) -> None:
    """重建全部 sink；参数为空时读取 LOG_LEVEL / LOG_FILE_DIR"""
    level = (level or os.getenv("LOG_LEVEL") or ("INFO" if IS_DOCKER else "DEBUG")).upper()
    log_dir = (log_dir if log_dir is not None else os.getenv("LOG_FILE_DIR", "")).strip()

    logger.remove()
    logger.add(
        sys.stdout,
        format=_CONSOLE_FORMATS["prod" if IS_DOCKER else "dev"],
        level=level,
        colorize=not IS_DOCKER,
        backtrace=not IS_DOCKER,
        diagnose=not IS_DOCKER,
    )

    if _file_sinks_enabled(log_dir):
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        for filename, file_level, retention in (
            ("runninghub.log", "DEBUG", "14 days"),
            ("runninghub_error.log", "WARNING", "30 days"),
        ):
            # enqueue=False: 同步写入，宿主可能是多进程部署
            logger.add(  # type: ignore[call-overload]
                path / filename,
                format=_FILE_FORMAT,
                level=file_level,
                rotation="50 MB",
                retention=retention,
                compression="gz",
                enqueue=False,
                encoding="utf-8",
                catch=True,
            )

    for name in _NOISY_STDLIB_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_logging()

__all__ = ["logger", "configure_logging"]
