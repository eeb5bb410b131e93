"""
错误消息处理工具函数
"""

from __future__ import annotations


def extract_error_message(error: BaseException, status_code: int | None = None) -> str:
    """
    从异常中提取错误消息，优先使用上游原始响应（用于日志排查）

    Args:
        error: 异常对象
        status_code: 可选的 HTTP 状态码

    Returns:
        错误消息字符串
    """
    provider_message = getattr(error, "provider_message", None)
    provider_code = getattr(error, "provider_code", None)
    if provider_message and isinstance(provider_message, str) and provider_message.strip():
        if provider_code is not None:
            return f"[{provider_code}] {provider_message}"
        return provider_message

    # httpx 超时异常的 str 可能为空
    error_str = str(error) or repr(error)
    if status_code is not None:
        return f"HTTP {status_code}: {error_str}"
    return error_str

