"""
请求日志工具函数
提供请求体脱敏、响应耗时格式化等功能
"""

from __future__ import annotations

from typing import Any

# 请求体中需要脱敏的字段
_SENSITIVE_FIELDS = frozenset({"apiKey", "api_key", "apikey", "token", "secret", "password"})

# 日志中单个字符串字段的最大长度
_MAX_LOG_VALUE_LENGTH = 50


def mask_secret(value: str) -> str:
    """
    脱敏密钥，仅保留前 4 位

    Args:
        value: 原始密钥

    Returns:
        形如 "8ee1***" 的字符串
    """
    if not value:
        return "***"
    return f"{value[:4]}***"


def redact_payload_for_log(payload: Any) -> Any:
    """
    递归复制请求体并脱敏敏感字段、截断过长字符串，用于日志记录

    原对象不会被修改。
    """
    if isinstance(payload, dict):
        redacted: dict[str, Any] = {}
        for key, value in payload.items():
            if key in _SENSITIVE_FIELDS and isinstance(value, str):
                redacted[key] = mask_secret(value)
            else:
                redacted[key] = redact_payload_for_log(value)
        return redacted
    if isinstance(payload, list):
        return [redact_payload_for_log(item) for item in payload]
    if isinstance(payload, str) and len(payload) > _MAX_LOG_VALUE_LENGTH:
        return payload[:_MAX_LOG_VALUE_LENGTH] + "..."
    return payload


def format_duration_ms(seconds: float) -> str:
    return f"{int(seconds * 1000)}ms"
