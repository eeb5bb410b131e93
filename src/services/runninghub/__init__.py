"""
RunningHub 任务编排服务
"""

from src.services.runninghub.client import TaskClient
from src.services.runninghub.error_classifier import ErrorAction, ErrorClassifier
from src.services.runninghub.orchestrator import (
    TaskOrchestrator,
    cancel_job,
    get_task_orchestrator,
    poll_until_done,
    submit_job,
)
from src.services.runninghub.parameters import ParameterNormalizer
from src.services.runninghub.poller import CancellationToken, PollingOrchestrator
from src.services.runninghub.regions import (
    REGION_CHINA,
    REGION_HONGKONG,
    RegionRouter,
    get_region_router,
)
from src.services.runninghub.result_resolver import ResultResolver

__all__ = [
    "CancellationToken",
    "ErrorAction",
    "ErrorClassifier",
    "ParameterNormalizer",
    "PollingOrchestrator",
    "REGION_CHINA",
    "REGION_HONGKONG",
    "RegionRouter",
    "ResultResolver",
    "TaskClient",
    "TaskOrchestrator",
    "cancel_job",
    "get_region_router",
    "get_task_orchestrator",
    "poll_until_done",
    "submit_job",
]
