"""
错误分类器（纯逻辑，无副作用）

将上游业务码/消息、HTTP 状态码、httpx 异常统一映射到
src.core.exceptions 中的封闭错误集合。TaskClient 与轮询器共用同一套规则，
调用方无论错误来自哪个调用都看到一致的错误类型。
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from src.core.exceptions import (
    InvalidParameterError,
    NotFoundError,
    ProviderError,
    TaskCancelledError,
    TaskFailedError,
    TaskOrchestrationError,
    TransientNetworkError,
)
from src.models.task import JobStatus

# 资源不存在指示词（webapp not exists / workflow not exists / task not found）
_NOT_FOUND_INDICATORS = frozenset(
    {
        "not exists",
        "not exist",
        "does not exist",
        "not found",
        "不存在",
    }
)

# 参数校验失败指示词
_INVALID_PARAMETER_INDICATORS = frozenset(
    {
        "apikey_invalid_node_info",
        "invalid_node_info",
        "invalid node info",
        "invalid param",
        "param error",
        "parameter",
        "validation",
        "参数",
    }
)

# HTTP 层面可重试的状态码
_TRANSIENT_HTTP_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class ErrorAction(str, Enum):
    """错误处理动作"""

    RETRY = "retry"  # 退避后重试
    RAISE = "raise"  # 直接抛给调用方


def _matches(message: str, indicators: frozenset[str]) -> bool:
    lowered = message.lower()
    return any(indicator in lowered for indicator in indicators)


class ErrorClassifier:
    """错误分类器"""

    @staticmethod
    def classify_response(
        code: int,
        msg: str | None,
        *,
        task_id: str | None = None,
        upstream_response: Any = None,
        operation: str = "请求",
    ) -> TaskOrchestrationError:
        """
        分类非零业务码

        注意：上游对多种错误都返回 400 之类的业务码（包括"任务无法取消"），
        因此参数错误只按消息内容识别，不按业务码识别。
        """
        message = (msg or "").strip()
        text = f"{operation}失败: [{code}] {message or '未知错误'}"
        kwargs: dict[str, Any] = {
            "provider_code": code,
            "provider_message": message or None,
            "task_id": task_id,
            "upstream_response": upstream_response,
        }

        if code == 404 or _matches(message, _NOT_FOUND_INDICATORS):
            return NotFoundError(text, **kwargs)
        if _matches(message, _INVALID_PARAMETER_INDICATORS):
            return InvalidParameterError(text, **kwargs)
        return ProviderError(text, **kwargs)

    @staticmethod
    def classify_http_status(
        status_code: int,
        body: str | None = None,
        *,
        task_id: str | None = None,
        operation: str = "请求",
    ) -> TaskOrchestrationError:
        """分类非 2xx 的 HTTP 响应"""
        snippet = (body or "").strip()[:200]
        text = f"{operation}失败: HTTP {status_code} {snippet}".rstrip()
        if status_code == 404:
            return NotFoundError(text, task_id=task_id, upstream_response=snippet or None)
        if status_code in _TRANSIENT_HTTP_STATUS or status_code >= 500:
            return TransientNetworkError(text, task_id=task_id, upstream_response=snippet or None)
        return ProviderError(text, task_id=task_id, upstream_response=snippet or None)

    @staticmethod
    def classify_exception(
        exc: BaseException,
        *,
        task_id: str | None = None,
        operation: str = "请求",
    ) -> TaskOrchestrationError:
        """将底层异常转换为编排错误；已分类的错误原样返回"""
        if isinstance(exc, TaskOrchestrationError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return TransientNetworkError(f"{operation}超时: {exc!r}", task_id=task_id)
        if isinstance(exc, httpx.TransportError):
            return TransientNetworkError(f"{operation}网络错误: {exc!r}", task_id=task_id)
        if isinstance(exc, httpx.HTTPStatusError):
            return ErrorClassifier.classify_http_status(
                exc.response.status_code,
                exc.response.text,
                task_id=task_id,
                operation=operation,
            )
        if isinstance(exc, ValueError):
            return ProviderError(f"{operation}响应解析失败: {exc}", task_id=task_id)
        return ProviderError(f"{operation}未知错误: {exc!r}", task_id=task_id)

    @staticmethod
    def classify_status(status: JobStatus, *, task_id: str) -> TaskOrchestrationError | None:
        """上游终态 FAILED / CANCELLED 对应的错误，其余状态返回 None"""
        if status == JobStatus.FAILED:
            return TaskFailedError(
                f"任务处理失败: taskId={task_id}",
                task_id=task_id,
                last_status=status.value,
            )
        if status == JobStatus.CANCELLED:
            return TaskCancelledError(
                f"任务已取消: taskId={task_id}",
                task_id=task_id,
                last_status=status.value,
            )
        return None

    @staticmethod
    def action_for(error: BaseException) -> ErrorAction:
        """只有临时网络错误可以重试"""
        if isinstance(error, TaskOrchestrationError) and error.retryable:
            return ErrorAction.RETRY
        return ErrorAction.RAISE
