"""
任务编排异常体系

所有对外抛出的错误都属于下面这个封闭集合，调用方据此决定
提示"稍后重试"还是永久失败。
"""

from __future__ import annotations

from typing import Any


class TaskOrchestrationError(Exception):
    """编排客户端错误基类"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        provider_code: int | None = None,
        provider_message: str | None = None,
        task_id: str | None = None,
        last_status: str | None = None,
        upstream_response: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider_code = provider_code
        self.provider_message = provider_message
        self.task_id = task_id
        self.last_status = last_status
        self.upstream_response = upstream_response

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "provider_code": self.provider_code,
            "provider_message": self.provider_message,
            "task_id": self.task_id,
            "last_status": self.last_status,
            "retryable": self.retryable,
        }


class ConfigurationError(TaskOrchestrationError):
    """配置错误（缺少 API Key、非法数值等）"""


class UnknownRegionError(ConfigurationError):
    """未配置的地区 ID"""

    def __init__(self, region_id: str, known_regions: list[str] | None = None):
        known = ", ".join(known_regions or [])
        super().__init__(f"未知地区: {region_id!r} (可用: {known})")
        self.region_id = region_id


class InvalidParameterError(TaskOrchestrationError):
    """参数错误：调用方传参不合法，或被上游参数校验拒绝"""


class NotFoundError(TaskOrchestrationError):
    """webapp / workflow / task 不存在"""


class TransientNetworkError(TaskOrchestrationError):
    """超时、连接重置等临时性网络错误"""

    retryable = True


class ProviderError(TaskOrchestrationError):
    """上游返回非零业务码且无更具体的分类"""


class TaskFailedError(TaskOrchestrationError):
    """上游报告任务失败"""


class TaskCancelledError(TaskOrchestrationError):
    """上游报告任务已取消"""


class PollingTimeoutError(TaskOrchestrationError):
    """本地轮询超过截止时间（远端任务可能仍在运行）"""

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        last_status: str | None = None,
        elapsed_seconds: float = 0.0,
        poll_count: int = 0,
    ):
        super().__init__(message, task_id=task_id, last_status=last_status)
        self.elapsed_seconds = elapsed_seconds
        self.poll_count = poll_count


class OperationCancelledError(TaskOrchestrationError):
    """调用方主动取消了本地等待"""

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        last_status: str | None = None,
        remote_cancelled: bool = False,
    ):
        super().__init__(message, task_id=task_id, last_status=last_status)
        self.remote_cancelled = remote_cancelled


__all__ = [
    "TaskOrchestrationError",
    "ConfigurationError",
    "UnknownRegionError",
    "InvalidParameterError",
    "NotFoundError",
    "TransientNetworkError",
    "ProviderError",
    "TaskFailedError",
    "TaskCancelledError",
    "PollingTimeoutError",
    "OperationCancelledError",
]
