"""
全局配置

所有配置均从环境变量读取，模块导入时构建一次，之后只读。
"""

from __future__ import annotations

import os

from src.core.exceptions import ConfigurationError


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"环境变量 {name} 不是有效数字: {raw!r}") from None


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"环境变量 {name} 不是有效整数: {raw!r}") from None


class Config:
    """RunningHub 编排客户端配置"""

    def __init__(self) -> None:
        # RunningHub 账号
        self.runninghub_api_key: str | None = os.getenv("RUNNINGHUB_API_KEY") or None

        # 地区域名（可覆盖，Host 头由域名推导）
        self.china_base_url: str = os.getenv(
            "RUNNINGHUB_CHINA_BASE_URL", "https://www.runninghub.cn"
        )
        self.hongkong_base_url: str = os.getenv(
            "RUNNINGHUB_HONGKONG_BASE_URL", "https://www.runninghub.ai"
        )

        # HTTP 客户端
        self.http_connect_timeout: float = _get_float("HTTP_CONNECT_TIMEOUT", 10.0)
        self.http_write_timeout: float = _get_float("HTTP_WRITE_TIMEOUT", 60.0)
        self.http_pool_timeout: float = _get_float("HTTP_POOL_TIMEOUT", 10.0)
        self.http_max_connections: int = _get_int("HTTP_MAX_CONNECTIONS", 100)
        self.http_keepalive_connections: int = _get_int("HTTP_KEEPALIVE_CONNECTIONS", 20)
        self.http_keepalive_expiry: float = _get_float("HTTP_KEEPALIVE_EXPIRY", 30.0)

        # 单次调用超时：提交任务较慢，其余接口较短
        self.submit_timeout: float = _get_float("RUNNINGHUB_SUBMIT_TIMEOUT", 60.0)
        self.request_timeout: float = _get_float("RUNNINGHUB_REQUEST_TIMEOUT", 30.0)
        self.upload_timeout: float = _get_float("RUNNINGHUB_UPLOAD_TIMEOUT", 120.0)
        self.slow_response_seconds: float = _get_float("RUNNINGHUB_SLOW_RESPONSE_SECONDS", 10.0)

        # 轮询策略默认值
        self.poll_interval: float = _get_float("RUNNINGHUB_POLL_INTERVAL", 5.0)
        self.poll_max_interval: float = _get_float("RUNNINGHUB_POLL_MAX_INTERVAL", 30.0)
        self.poll_backoff: float = _get_float("RUNNINGHUB_POLL_BACKOFF", 1.5)
        self.poll_jitter: float = _get_float("RUNNINGHUB_POLL_JITTER", 0.1)
        self.poll_timeout: float = _get_float("RUNNINGHUB_POLL_TIMEOUT", 300.0)
        self.poll_max_transient_retries: int = _get_int(
            "RUNNINGHUB_POLL_MAX_TRANSIENT_RETRIES", 5
        )
        # 任务成功后等待结果落盘的时间
        self.result_delay: float = _get_float("RUNNINGHUB_RESULT_DELAY", 3.0)

    def require_api_key(self) -> str:
        if not self.runninghub_api_key:
            raise ConfigurationError("RUNNINGHUB_API_KEY 未配置")
        return self.runninghub_api_key


config = Config()

__all__ = ["Config", "config"]
