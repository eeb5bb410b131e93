"""
RunningHub 任务数据模型

- 本地数据结构（dataclass）：地区、节点参数、任务、轮询策略
- 上游线协议（pydantic）：请求体与响应信封
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from src.core.exceptions import (
    InvalidParameterError,
    PollingTimeoutError,
    TaskOrchestrationError,
)

if TYPE_CHECKING:
    from src.config.settings import Config


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def from_provider(cls, value: str) -> JobStatus | None:
        """将上游状态（含同义词，大小写不敏感）映射为本地状态，无法识别时返回 None"""
        return _PROVIDER_STATUS_SYNONYMS.get(value.strip().upper())


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELLED})

_PROVIDER_STATUS_SYNONYMS: dict[str, JobStatus] = {
    "PENDING": JobStatus.PENDING,
    "QUEUED": JobStatus.PENDING,
    "WAITING": JobStatus.PENDING,
    "CREATED": JobStatus.PENDING,
    "RUNNING": JobStatus.RUNNING,
    "PROCESSING": JobStatus.RUNNING,
    "SUCCESS": JobStatus.SUCCESS,
    "SUCCEEDED": JobStatus.SUCCESS,
    "COMPLETED": JobStatus.SUCCESS,
    "FAILED": JobStatus.FAILED,
    "FAIL": JobStatus.FAILED,
    "ERROR": JobStatus.FAILED,
    "CANCELLED": JobStatus.CANCELLED,
    "CANCELED": JobStatus.CANCELLED,
}

# 状态推进顺序，终态之间同级
_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.RUNNING: 1,
    JobStatus.SUCCESS: 2,
    JobStatus.FAILED: 2,
    JobStatus.CANCELLED: 2,
}


class JobKind(str, Enum):
    """任务类型，决定提交接口与 ID 字段名"""

    WEBAPP = "webapp"  # /task/openapi/ai-app/run, webappId
    WORKFLOW = "workflow"  # /task/openapi/create, workflowId (ComfyUI)


class ProviderId(str):
    """
    webapp / workflow ID

    上游要求 ID 以字符串传递；纯数字的长 ID 若被当作整数会丢失精度或被拒绝，
    因此禁止从 int / float / bool 构造。
    """

    def __new__(cls, value: Any) -> ProviderId:
        if not isinstance(value, str):
            raise InvalidParameterError(
                f"ID 必须是字符串，收到 {type(value).__name__}: {value!r}"
            )
        stripped = value.strip()
        if not stripped:
            raise InvalidParameterError("ID 不能为空")
        return super().__new__(cls, stripped)


@dataclass(frozen=True)
class RegionConfig:
    id: str
    name: str
    base_url: str
    host_header: str


@dataclass(frozen=True)
class NodeFieldAssignment:
    node_id: str
    field_name: str
    field_value: str
    param_key: str | None = None

    def to_wire(self) -> NodeInfo:
        # param_key 仅供调用方使用，不上传
        return NodeInfo(nodeId=self.node_id, fieldName=self.field_name, fieldValue=self.field_value)


@dataclass(frozen=True)
class JobSubmission:
    app_id: ProviderId
    node_info_list: list[NodeFieldAssignment]
    region_id: str
    kind: JobKind = JobKind.WEBAPP
    instance_type: str | None = None


@dataclass
class Job:
    """单个任务的本地短期状态，不做持久化"""

    task_id: str
    region_id: str
    status: JobStatus = JobStatus.PENDING
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_polled_at: datetime | None = None
    poll_count: int = 0
    result_urls: list[str] = field(default_factory=list)
    error: TaskOrchestrationError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, PollingTimeoutError)

    def apply_status(self, status: JobStatus) -> bool:
        """
        推进任务状态，保证单调：终态不再变化，回退的观测值被忽略

        Returns:
            状态是否发生变化
        """
        if self.status.is_terminal or status == self.status:
            return False
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            return False
        self.status = status
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "region_id": self.region_id,
            "status": self.status.value,
            "submitted_at": self.submitted_at.isoformat(),
            "last_polled_at": self.last_polled_at.isoformat() if self.last_polled_at else None,
            "poll_count": self.poll_count,
            "result_urls": list(self.result_urls),
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class PollingPolicy:
    """
    轮询策略

    initial_interval: 首次状态查询之后的等待间隔（秒）
    max_interval: 退避后的最大间隔（秒）
    backoff_multiplier: 每轮间隔放大倍数，1.0 表示固定间隔
    jitter_ratio: 随机抖动比例（0.1 = ±10%）
    timeout: 本地等待截止时间（秒），从开始轮询计起
    max_transient_retries: 连续临时网络错误的最大重试次数
    result_delay: 任务成功后、获取结果前的等待（秒）
    """

    initial_interval: float = 5.0
    max_interval: float = 30.0
    backoff_multiplier: float = 1.5
    jitter_ratio: float = 0.1
    timeout: float = 300.0
    max_transient_retries: int = 5
    result_delay: float = 3.0

    def __post_init__(self) -> None:
        if self.initial_interval < 0 or self.max_interval < 0:
            raise InvalidParameterError("轮询间隔不能为负数")
        if self.backoff_multiplier < 1.0:
            raise InvalidParameterError("backoff_multiplier 必须 >= 1.0")
        if not 0.0 <= self.jitter_ratio < 1.0:
            raise InvalidParameterError("jitter_ratio 必须在 [0, 1) 区间")
        if self.timeout <= 0:
            raise InvalidParameterError("timeout 必须大于 0")
        if self.max_transient_retries < 0:
            raise InvalidParameterError("max_transient_retries 不能为负数")
        if self.result_delay < 0:
            raise InvalidParameterError("result_delay 不能为负数")

    @classmethod
    def from_config(cls, settings: Config, **overrides: Any) -> PollingPolicy:
        values: dict[str, Any] = {
            "initial_interval": settings.poll_interval,
            "max_interval": settings.poll_max_interval,
            "backoff_multiplier": settings.poll_backoff,
            "jitter_ratio": settings.poll_jitter,
            "timeout": settings.poll_timeout,
            "max_transient_retries": settings.poll_max_transient_retries,
            "result_delay": settings.result_delay,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ============================================================================
# 线协议模型
# ============================================================================


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NodeInfo(WireModel):
    node_id: StrictStr = Field(..., alias="nodeId")
    field_name: StrictStr = Field(..., alias="fieldName")
    field_value: StrictStr = Field(..., alias="fieldValue")


class WebappRunRequest(WireModel):
    """POST /task/openapi/ai-app/run"""

    webapp_id: StrictStr = Field(..., alias="webappId")
    api_key: StrictStr = Field(..., alias="apiKey")
    node_info_list: list[NodeInfo] = Field(default_factory=list, alias="nodeInfoList")


class WorkflowCreateRequest(WireModel):
    """POST /task/openapi/create（ComfyUI 工作流）"""

    workflow_id: StrictStr = Field(..., alias="workflowId")
    api_key: StrictStr = Field(..., alias="apiKey")
    # 为空时走简易模式，不修改工作流参数
    node_info_list: list[NodeInfo] | None = Field(None, alias="nodeInfoList")
    add_metadata: bool = Field(True, alias="addMetadata")
    instance_type: StrictStr | None = Field(None, alias="instanceType")


class TaskQueryRequest(WireModel):
    """status / outputs / cancel 共用请求体"""

    api_key: StrictStr = Field(..., alias="apiKey")
    task_id: StrictStr = Field(..., alias="taskId")


class ProviderResponse(BaseModel):
    """上游统一响应信封 {code, msg, data}"""

    model_config = ConfigDict(extra="allow")

    code: int
    msg: str | None = None
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.code == 0


__all__ = [
    "JobStatus",
    "TERMINAL_STATUSES",
    "JobKind",
    "ProviderId",
    "RegionConfig",
    "NodeFieldAssignment",
    "JobSubmission",
    "Job",
    "PollingPolicy",
    "NodeInfo",
    "WebappRunRequest",
    "WorkflowCreateRequest",
    "TaskQueryRequest",
    "ProviderResponse",
]
