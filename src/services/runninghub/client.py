"""
RunningHub 任务客户端

绑定单个地区的无状态 HTTP 客户端，提供提交 / 状态 / 结果 / 取消 / 上传。
所有失败都经 ErrorClassifier 转换为唯一的类型化错误后抛出，不吞异常。
"""

from __future__ import annotations

import json
import time
from typing import Any

import httpx

from src.clients.http_client import HTTPClientPool, build_default_timeout, build_region_headers
from src.config.settings import Config, config
from src.core.exceptions import InvalidParameterError, ProviderError
from src.core.logger import logger
from src.models.task import (
    JobKind,
    JobStatus,
    JobSubmission,
    ProviderResponse,
    RegionConfig,
    TaskQueryRequest,
    WebappRunRequest,
    WorkflowCreateRequest,
)
from src.services.runninghub.error_classifier import ErrorClassifier
from src.utils.request_utils import format_duration_ms, redact_payload_for_log

WEBAPP_RUN_PATH = "/task/openapi/ai-app/run"
WORKFLOW_CREATE_PATH = "/task/openapi/create"
STATUS_PATH = "/task/openapi/status"
OUTPUTS_PATH = "/task/openapi/outputs"
CANCEL_PATH = "/task/openapi/cancel"
UPLOAD_PATH = "/task/openapi/upload"


class TaskClient:
    """
    单地区任务客户端

    Args:
        region: 地区配置，构造后不可更换
        api_key: RunningHub API Key，默认取 RUNNINGHUB_API_KEY
        http_client: 可注入的 httpx.AsyncClient，默认使用地区连接池
    """

    def __init__(
        self,
        region: RegionConfig,
        *,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        classifier: ErrorClassifier | None = None,
        settings: Config | None = None,
    ) -> None:
        self.region = region
        self.settings = settings or config
        self._api_key = api_key or self.settings.require_api_key()
        self._http_client = http_client
        self.classifier = classifier or ErrorClassifier()

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return await HTTPClientPool.get_region_client(self.region)

    def _url(self, path: str) -> str:
        return f"{self.region.base_url.rstrip('/')}{path}"

    async def _post(
        self,
        path: str,
        *,
        operation: str,
        timeout: float,
        task_id: str | None = None,
        json_payload: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> ProviderResponse:
        client = await self._get_http_client()
        headers = build_region_headers(self.region, json_body=files is None)

        if json_payload is not None:
            logger.debug(
                "[RunningHub] {} 请求 (地区: {}): {}",
                operation,
                self.region.name,
                redact_payload_for_log(json_payload),
            )

        start = time.monotonic()
        try:
            response = await client.post(
                self._url(path),
                json=json_payload,
                data=data,
                files=files,
                headers=headers,
                timeout=build_default_timeout(timeout, self.settings),
            )
        except httpx.HTTPError as exc:
            error = self.classifier.classify_exception(exc, task_id=task_id, operation=operation)
            logger.warning(
                "[RunningHub] {} 失败 (地区: {}, 耗时: {}): {}",
                operation,
                self.region.id,
                format_duration_ms(time.monotonic() - start),
                error.message,
            )
            raise error from exc

        elapsed = time.monotonic() - start
        if elapsed > self.settings.slow_response_seconds:
            logger.warning(
                "[RunningHub] {} 响应缓慢: path={}, region={}, 耗时={}",
                operation,
                path,
                self.region.id,
                format_duration_ms(elapsed),
            )

        if response.status_code >= 400:
            raise self.classifier.classify_http_status(
                response.status_code, response.text, task_id=task_id, operation=operation
            )

        try:
            envelope = ProviderResponse.model_validate(response.json())
        except ValueError as exc:
            raise ProviderError(
                f"{operation}响应格式无效: {response.text[:200]}",
                task_id=task_id,
                upstream_response=response.text[:200],
            ) from exc

        logger.debug(
            "[RunningHub] {} 响应 (地区: {}, 耗时: {}): code={}, msg={}",
            operation,
            self.region.name,
            format_duration_ms(elapsed),
            envelope.code,
            envelope.msg,
        )

        if not envelope.ok:
            raise self.classifier.classify_response(
                envelope.code,
                envelope.msg,
                task_id=task_id,
                upstream_response=envelope.model_dump(),
                operation=operation,
            )
        return envelope

    def _build_submit_payload(self, submission: JobSubmission) -> tuple[str, dict[str, Any]]:
        node_info_list = [assignment.to_wire() for assignment in submission.node_info_list]
        if submission.kind == JobKind.WORKFLOW:
            request: WebappRunRequest | WorkflowCreateRequest = WorkflowCreateRequest(
                workflow_id=str(submission.app_id),
                api_key=self._api_key,
                node_info_list=node_info_list or None,
                instance_type=submission.instance_type,
            )
            return WORKFLOW_CREATE_PATH, request.to_payload()
        request = WebappRunRequest(
            webapp_id=str(submission.app_id),
            api_key=self._api_key,
            node_info_list=node_info_list,
        )
        return WEBAPP_RUN_PATH, request.to_payload()

    def _check_prompt_tips(self, data: dict[str, Any]) -> None:
        """ComfyUI 工作流校验信息，node_errors 非空说明参数不合法"""
        raw_tips = data.get("promptTips")
        if not raw_tips or not isinstance(raw_tips, str):
            return
        try:
            tips = json.loads(raw_tips)
        except ValueError:
            logger.debug("[RunningHub] promptTips 解析失败，忽略: {}", raw_tips[:200])
            return
        if not isinstance(tips, dict):
            return
        if tips.get("error") or tips.get("node_errors"):
            raise InvalidParameterError(
                f"工作流校验失败: {raw_tips[:500]}",
                task_id=str(data.get("taskId")) if data.get("taskId") else None,
                provider_message=raw_tips[:500],
            )

    async def submit(self, submission: JobSubmission) -> str:
        """提交任务，返回 taskId"""
        path, payload = self._build_submit_payload(submission)
        envelope = await self._post(
            path,
            operation="提交任务",
            timeout=self.settings.submit_timeout,
            json_payload=payload,
        )

        data = envelope.data if isinstance(envelope.data, dict) else {}
        if submission.kind == JobKind.WORKFLOW:
            self._check_prompt_tips(data)

        task_id = data.get("taskId")
        if task_id is None or not str(task_id).strip():
            raise ProviderError(
                "提交任务失败: 未返回 taskId",
                provider_code=envelope.code,
                provider_message=envelope.msg,
                upstream_response=envelope.model_dump(),
            )

        task_id = str(task_id)
        logger.info(
            "[RunningHub] 任务提交成功: taskId={}, {}={}, region={}",
            task_id,
            submission.kind.value,
            submission.app_id,
            self.region.id,
        )
        return task_id

    async def get_status(self, task_id: str) -> JobStatus:
        """查询一次任务状态"""
        payload = TaskQueryRequest(api_key=self._api_key, task_id=task_id).to_payload()
        envelope = await self._post(
            STATUS_PATH,
            operation="查询状态",
            timeout=self.settings.request_timeout,
            task_id=task_id,
            json_payload=payload,
        )

        raw_status = envelope.data
        if isinstance(raw_status, dict):
            raw_status = raw_status.get("status") or raw_status.get("taskStatus")
        status = JobStatus.from_provider(raw_status) if isinstance(raw_status, str) else None
        if status is None:
            raise ProviderError(
                f"查询状态失败: 无法识别的状态 {envelope.data!r}, taskId={task_id}",
                provider_code=envelope.code,
                provider_message=envelope.msg,
                task_id=task_id,
                upstream_response=envelope.model_dump(),
            )
        return status

    async def get_result(self, task_id: str) -> Any:
        """获取原始结果（数组 / 对象 / None），由 ResultResolver 负责解析"""
        payload = TaskQueryRequest(api_key=self._api_key, task_id=task_id).to_payload()
        envelope = await self._post(
            OUTPUTS_PATH,
            operation="获取结果",
            timeout=self.settings.request_timeout,
            task_id=task_id,
            json_payload=payload,
        )
        return envelope.data

    async def cancel(self, task_id: str) -> bool:
        """取消任务；已处于终态的任务会返回非零业务码并抛出 ProviderError"""
        payload = TaskQueryRequest(api_key=self._api_key, task_id=task_id).to_payload()
        await self._post(
            CANCEL_PATH,
            operation="取消任务",
            timeout=self.settings.request_timeout,
            task_id=task_id,
            json_payload=payload,
        )
        logger.info("[RunningHub] 任务取消成功: taskId={}, region={}", task_id, self.region.id)
        return True

    async def upload_file(
        self,
        content: bytes,
        filename: str,
        content_type: str = "image/png",
        *,
        file_type: str = "image",
    ) -> str:
        """上传文件，返回可用于 LoadImage 节点的 fileName"""
        if not content:
            raise InvalidParameterError("上传文件内容为空")

        envelope = await self._post(
            UPLOAD_PATH,
            operation="上传文件",
            timeout=self.settings.upload_timeout,
            data={"apiKey": self._api_key, "fileType": file_type},
            files={"file": (filename, content, content_type)},
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        file_name = data.get("fileName")
        if not isinstance(file_name, str) or not file_name:
            raise ProviderError(
                "上传文件失败: 未返回 fileName",
                provider_code=envelope.code,
                provider_message=envelope.msg,
                upstream_response=envelope.model_dump(),
            )
        logger.info(
            "[RunningHub] 文件上传成功: {} ({} bytes) -> {}", filename, len(content), file_name
        )
        return file_name
