"""
任务轮询器

显式状态机：PENDING -> RUNNING -> {SUCCESS, FAILED, CANCELLED}，
另有本地决定的超时 / 主动取消两种结局。

- 同一任务的状态查询严格串行
- 截止时间在开始轮询时计算，只停止本地等待，不影响远端任务
- 取消信号只在两次查询之间检查，触发一次尽力而为的远端取消
- 临时网络错误按退避重试，永远不会被当作任务终态
"""

from __future__ import annotations

import asyncio
import inspect
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from src.core.exceptions import (
    OperationCancelledError,
    PollingTimeoutError,
    TaskOrchestrationError,
)
from src.core.error_utils import extract_error_message
from src.core.logger import logger
from src.models.task import Job, PollingPolicy
from src.services.runninghub.client import TaskClient
from src.services.runninghub.error_classifier import ErrorAction, ErrorClassifier
from src.services.runninghub.result_resolver import ResultResolver
from src.utils.clock import DEFAULT_CLOCK, Clock

JobUpdateHook = Callable[[Job], "Awaitable[Any] | Any"]


class CancellationToken:
    """协作式取消信号，可在任意协程中设置"""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class PollingOrchestrator:
    """驱动单个 TaskClient 的状态轮询，直到终态、超时或取消"""

    # 临时错误退避的指数上限
    MAX_BACKOFF_EXPONENT = 5

    def __init__(
        self,
        client: TaskClient,
        *,
        policy: PollingPolicy | None = None,
        clock: Clock | None = None,
        resolver: ResultResolver | None = None,
        classifier: ErrorClassifier | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.client = client
        self.policy = policy or PollingPolicy.from_config(client.settings)
        self.clock = clock or DEFAULT_CLOCK
        self.resolver = resolver or ResultResolver()
        self.classifier = classifier or client.classifier
        self._rng = rng or random.Random()

    async def run(
        self,
        job: Job,
        *,
        cancel_token: CancellationToken | None = None,
        on_update: JobUpdateHook | None = None,
    ) -> list[str]:
        """轮询到终态并返回结果 URL；其余结局抛出对应的类型化错误"""
        try:
            return await self._poll(job, cancel_token, on_update)
        except TaskOrchestrationError as exc:
            job.error = exc
            await notify_job_update(on_update, job)
            raise

    async def _poll(
        self,
        job: Job,
        cancel_token: CancellationToken | None,
        on_update: JobUpdateHook | None,
    ) -> list[str]:
        if job.is_terminal:
            return await self._finish(job, on_update)

        started_at = self.clock.monotonic()
        deadline = started_at + self.policy.timeout
        interval = self.policy.initial_interval
        transient_failures = 0

        logger.debug(
            "[RunningHub] 开始轮询任务状态: taskId={}, region={}, timeout={}s",
            job.task_id,
            job.region_id,
            self.policy.timeout,
        )

        while True:
            if cancel_token is not None and cancel_token.is_cancelled:
                raise await self._abort(job, cancel_token)

            if self.clock.monotonic() >= deadline:
                raise self._timeout_error(job, started_at)

            try:
                status = await self.client.get_status(job.task_id)
            except TaskOrchestrationError as exc:
                if self.classifier.action_for(exc) != ErrorAction.RETRY:
                    raise
                transient_failures += 1
                if transient_failures > self.policy.max_transient_retries:
                    raise PollingTimeoutError(
                        f"状态查询连续 {transient_failures} 次网络错误: taskId={job.task_id}, "
                        f"最后状态={job.status.value}",
                        task_id=job.task_id,
                        last_status=job.status.value,
                        elapsed_seconds=self.clock.monotonic() - started_at,
                        poll_count=job.poll_count,
                    ) from exc
                delay = self._transient_backoff(transient_failures)
                logger.warning(
                    "[RunningHub] 状态查询网络错误，{:.1f}s 后重试 ({}/{}): taskId={}, error={}",
                    delay,
                    transient_failures,
                    self.policy.max_transient_retries,
                    job.task_id,
                    extract_error_message(exc),
                )
                await self._wait(delay, deadline)
                continue

            transient_failures = 0
            job.poll_count += 1
            job.last_polled_at = datetime.now(timezone.utc)
            previous = job.status
            if job.apply_status(status):
                logger.info(
                    "[RunningHub] 任务状态更新: taskId={}, {} -> {}, polls={}",
                    job.task_id,
                    previous.value,
                    job.status.value,
                    job.poll_count,
                )
                await notify_job_update(on_update, job)
            elif status != job.status:
                logger.debug(
                    "[RunningHub] 忽略回退的状态观测: taskId={}, 当前={}, 观测={}",
                    job.task_id,
                    job.status.value,
                    status.value,
                )

            if job.is_terminal:
                return await self._finish(job, on_update)

            await self._wait(self._jittered(interval), deadline)
            interval = min(interval * self.policy.backoff_multiplier, self.policy.max_interval)

    async def _finish(self, job: Job, on_update: JobUpdateHook | None) -> list[str]:
        error = self.classifier.classify_status(job.status, task_id=job.task_id)
        if error is not None:
            logger.warning("[RunningHub] {}", error.message)
            raise error

        if self.policy.result_delay > 0:
            # 状态刚变为 SUCCESS 时结果文件可能还未就绪
            await self.clock.sleep(self.policy.result_delay)

        raw_payload = await self.client.get_result(job.task_id)
        job.result_urls = self.resolver.resolve(raw_payload, self.client.region)
        logger.info(
            "[RunningHub] 任务处理完成: taskId={}, 结果数={}",
            job.task_id,
            len(job.result_urls),
        )
        await notify_job_update(on_update, job)
        return list(job.result_urls)

    async def _abort(self, job: Job, cancel_token: CancellationToken) -> OperationCancelledError:
        """本地取消：尽力取消远端任务，远端失败只记录日志"""
        remote_cancelled = False
        try:
            remote_cancelled = await self.client.cancel(job.task_id)
        except TaskOrchestrationError as exc:
            logger.warning(
                "[RunningHub] 远端取消失败（任务可能仍在运行）: taskId={}, error={}",
                job.task_id,
                extract_error_message(exc),
            )

        reason = f", 原因: {cancel_token.reason}" if cancel_token.reason else ""
        return OperationCancelledError(
            f"轮询已被调用方取消: taskId={job.task_id}{reason}",
            task_id=job.task_id,
            last_status=job.status.value,
            remote_cancelled=remote_cancelled,
        )

    def _timeout_error(self, job: Job, started_at: float) -> PollingTimeoutError:
        elapsed = self.clock.monotonic() - started_at
        return PollingTimeoutError(
            f"任务处理超时: taskId={job.task_id}, 最后状态={job.status.value}, "
            f"已等待 {elapsed:.1f}s",
            task_id=job.task_id,
            last_status=job.status.value,
            elapsed_seconds=elapsed,
            poll_count=job.poll_count,
        )

    def _transient_backoff(self, failures: int) -> float:
        base = self.policy.initial_interval * (2 ** min(failures - 1, self.MAX_BACKOFF_EXPONENT))
        return self._jittered(min(base, self.policy.max_interval))

    def _jittered(self, delay: float) -> float:
        if delay <= 0 or self.policy.jitter_ratio <= 0:
            return delay
        spread = self.policy.jitter_ratio
        return delay * (1 + self._rng.uniform(-spread, spread))

    async def _wait(self, delay: float, deadline: float) -> None:
        """等待 delay 秒，但不越过截止时间"""
        remaining = deadline - self.clock.monotonic()
        sleep_for = min(delay, remaining)
        if sleep_for > 0:
            await self.clock.sleep(sleep_for)


async def notify_job_update(on_update: JobUpdateHook | None, job: Job) -> None:
    """调用任务更新回调，同步 / 异步回调均可"""
    if on_update is None:
        return
    result = on_update(job)
    if inspect.isawaitable(result):
        await result


__all__ = ["CancellationToken", "PollingOrchestrator", "JobUpdateHook", "notify_job_update"]
