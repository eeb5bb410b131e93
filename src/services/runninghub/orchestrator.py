"""
RunningHub 任务编排入口

对外暴露的唯一门面：
    from src.services.runninghub import poll_until_done

    urls = await poll_until_done("hongkong", "1937084629516193794", [
        {"nodeId": "24", "fieldName": "image", "fieldValue": "abc.png"},
        {"nodeId": "62", "fieldName": "value", "fieldValue": 0.25},
    ])

地区解析与参数规范化都在任何网络请求之前完成，
失败时调用方拿到的一定是 src.core.exceptions 中的类型化错误。
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from typing import Any

import httpx

from src.config.settings import Config, config
from src.core.exceptions import InvalidParameterError, OperationCancelledError
from src.core.logger import logger
from src.models.task import (
    Job,
    JobKind,
    JobStatus,
    JobSubmission,
    PollingPolicy,
    RegionConfig,
)
from src.services.runninghub.client import TaskClient
from src.services.runninghub.error_classifier import ErrorClassifier
from src.services.runninghub.parameters import ParameterNormalizer
from src.services.runninghub.poller import (
    CancellationToken,
    JobUpdateHook,
    PollingOrchestrator,
    notify_job_update,
)
from src.services.runninghub.regions import RegionRouter, get_region_router
from src.services.runninghub.result_resolver import ResultResolver
from src.utils.clock import DEFAULT_CLOCK, Clock

TaskClientFactory = Callable[[RegionConfig], TaskClient]


def _coerce_kind(kind: JobKind | str) -> JobKind:
    if isinstance(kind, JobKind):
        return kind
    try:
        return JobKind(str(kind).strip().lower())
    except ValueError:
        raise InvalidParameterError(f"不支持的任务类型: {kind!r}") from None


def _require_task_id(task_id: Any) -> str:
    if not isinstance(task_id, str) or not task_id.strip():
        raise InvalidParameterError(f"taskId 无效: {task_id!r}")
    return task_id.strip()


class TaskOrchestrator:
    """
    任务编排器

    组合 RegionRouter / ParameterNormalizer / TaskClient / PollingOrchestrator，
    本身不保存任务状态，可在多个协程间共享。

    Args:
        router: 地区路由，默认使用全局路由
        api_key: RunningHub API Key，默认取配置
        http_client: 共享的 httpx.AsyncClient（测试中注入 MockTransport）
        client_factory: 自定义 TaskClient 构造，优先于 http_client
        clock: 轮询使用的时钟
    """

    def __init__(
        self,
        *,
        router: RegionRouter | None = None,
        normalizer: ParameterNormalizer | None = None,
        resolver: ResultResolver | None = None,
        classifier: ErrorClassifier | None = None,
        settings: Config | None = None,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        client_factory: TaskClientFactory | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or config
        self.router = router or get_region_router()
        self.normalizer = normalizer or ParameterNormalizer()
        self.resolver = resolver or ResultResolver()
        self.classifier = classifier or ErrorClassifier()
        self.clock = clock or DEFAULT_CLOCK
        self._api_key = api_key
        self._http_client = http_client
        self._client_factory = client_factory

    def _client_for(self, region: RegionConfig) -> TaskClient:
        if self._client_factory is not None:
            return self._client_factory(region)
        return TaskClient(
            region,
            api_key=self._api_key,
            http_client=self._http_client,
            classifier=self.classifier,
            settings=self.settings,
        )

    def _resolve_region(self, region_id: str) -> RegionConfig:
        # 地区必须由调用方显式传入，空值同样视为未知地区
        return self.router.resolve(region_id)

    def build_policy(
        self, policy: PollingPolicy | None = None, timeout: float | None = None
    ) -> PollingPolicy:
        if policy is None:
            return PollingPolicy.from_config(self.settings, timeout=timeout)
        if timeout is not None:
            return dataclasses.replace(policy, timeout=timeout)
        return policy

    def prepare_submission(
        self,
        region_id: str,
        app_id: Any,
        node_info_list: Iterable[Any] | None = None,
        *,
        kind: JobKind | str = JobKind.WEBAPP,
        instance_type: str | None = None,
    ) -> JobSubmission:
        """纯本地校验：解析地区、规范化 ID 与节点参数，不发起网络请求"""
        region = self._resolve_region(region_id)
        if instance_type is not None and (
            not isinstance(instance_type, str) or not instance_type.strip()
        ):
            raise InvalidParameterError(f"instanceType 无效: {instance_type!r}")
        return JobSubmission(
            app_id=self.normalizer.normalize_provider_id(app_id),
            node_info_list=self.normalizer.normalize(node_info_list),
            region_id=region.id,
            kind=_coerce_kind(kind),
            instance_type=instance_type.strip() if instance_type else None,
        )

    async def submit_job(
        self,
        region_id: str,
        app_id: Any,
        node_info_list: Iterable[Any] | None = None,
        *,
        kind: JobKind | str = JobKind.WEBAPP,
        instance_type: str | None = None,
    ) -> Job:
        """提交任务，返回 PENDING 状态的 Job"""
        submission = self.prepare_submission(
            region_id, app_id, node_info_list, kind=kind, instance_type=instance_type
        )
        region = self.router.resolve(submission.region_id)
        client = self._client_for(region)
        task_id = await client.submit(submission)
        return Job(task_id=task_id, region_id=region.id)

    async def wait_for_job(
        self,
        job: Job,
        *,
        policy: PollingPolicy | None = None,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
        on_update: JobUpdateHook | None = None,
    ) -> list[str]:
        """轮询一个已提交的任务直到结束，返回结果 URL"""
        region = self.router.resolve(job.region_id)
        poller = PollingOrchestrator(
            self._client_for(region),
            policy=self.build_policy(policy, timeout),
            clock=self.clock,
            resolver=self.resolver,
            classifier=self.classifier,
        )
        return await poller.run(job, cancel_token=cancel_token, on_update=on_update)

    async def poll_until_done(
        self,
        region_id: str,
        app_id: Any,
        node_info_list: Iterable[Any] | None = None,
        *,
        policy: PollingPolicy | None = None,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
        on_update: JobUpdateHook | None = None,
        kind: JobKind | str = JobKind.WEBAPP,
        instance_type: str | None = None,
    ) -> list[str]:
        """提交并等待任务完成"""
        # 策略在提交前校验，非法参数不产生远端任务
        resolved_policy = self.build_policy(policy, timeout)
        submission = self.prepare_submission(
            region_id, app_id, node_info_list, kind=kind, instance_type=instance_type
        )
        if cancel_token is not None and cancel_token.is_cancelled:
            raise OperationCancelledError("提交前已被调用方取消", remote_cancelled=False)

        region = self.router.resolve(submission.region_id)
        task_id = await self._client_for(region).submit(submission)
        job = Job(task_id=task_id, region_id=region.id)
        await notify_job_update(on_update, job)

        return await self.wait_for_job(
            job, policy=resolved_policy, cancel_token=cancel_token, on_update=on_update
        )

    async def cancel_job(self, region_id: str, task_id: str) -> bool:
        """取消远端任务；任务已结束时上游拒绝，抛出 ProviderError"""
        task_id = _require_task_id(task_id)
        region = self._resolve_region(region_id)
        return await self._client_for(region).cancel(task_id)

    async def get_job_status(self, region_id: str, task_id: str) -> JobStatus:
        task_id = _require_task_id(task_id)
        region = self._resolve_region(region_id)
        return await self._client_for(region).get_status(task_id)

    async def get_job_results(self, region_id: str, task_id: str) -> list[str]:
        task_id = _require_task_id(task_id)
        region = self._resolve_region(region_id)
        raw_payload = await self._client_for(region).get_result(task_id)
        return self.resolver.resolve(raw_payload, region)

    async def upload_image(
        self,
        region_id: str,
        content: bytes,
        filename: str,
        content_type: str = "image/png",
    ) -> str:
        """上传图片，返回 fileName，可作为 LoadImage 节点的 fieldValue"""
        region = self._resolve_region(region_id)
        if not isinstance(filename, str) or not filename.strip():
            raise InvalidParameterError("文件名不能为空")
        logger.debug("[RunningHub] 上传图片: {} -> {}", filename, region.id)
        return await self._client_for(region).upload_file(content, filename, content_type)


_task_orchestrator: TaskOrchestrator | None = None


def get_task_orchestrator() -> TaskOrchestrator:
    global _task_orchestrator
    if _task_orchestrator is None:
        _task_orchestrator = TaskOrchestrator()
    return _task_orchestrator


async def submit_job(
    region_id: str,
    app_id: Any,
    node_info_list: Iterable[Any] | None = None,
    **kwargs: Any,
) -> Job:
    return await get_task_orchestrator().submit_job(region_id, app_id, node_info_list, **kwargs)


async def poll_until_done(
    region_id: str,
    app_id: Any,
    node_info_list: Iterable[Any] | None = None,
    **kwargs: Any,
) -> list[str]:
    return await get_task_orchestrator().poll_until_done(
        region_id, app_id, node_info_list, **kwargs
    )


async def cancel_job(region_id: str, task_id: str) -> bool:
    return await get_task_orchestrator().cancel_job(region_id, task_id)
