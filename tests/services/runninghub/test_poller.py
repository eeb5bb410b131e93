import random
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.core.exceptions import (
    OperationCancelledError,
    PollingTimeoutError,
    ProviderError,
    TaskCancelledError,
    TaskFailedError,
    TransientNetworkError,
)
from src.models.task import Job, JobStatus, PollingPolicy, RegionConfig
from src.services.runninghub.error_classifier import ErrorClassifier
from src.services.runninghub.poller import CancellationToken, PollingOrchestrator

POLICY = PollingPolicy(
    initial_interval=5.0,
    max_interval=30.0,
    backoff_multiplier=2.0,
    jitter_ratio=0.0,
    timeout=300.0,
    max_transient_retries=3,
    result_delay=3.0,
)


def _fake_client(region: RegionConfig, statuses, result=None) -> SimpleNamespace:
    return SimpleNamespace(
        region=region,
        settings=None,
        classifier=ErrorClassifier(),
        get_status=AsyncMock(side_effect=statuses),
        get_result=AsyncMock(return_value=result),
        cancel=AsyncMock(return_value=True),
    )


def _poller(client, clock, policy: PollingPolicy = POLICY) -> PollingOrchestrator:
    return PollingOrchestrator(client, policy=policy, clock=clock)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_pending_running_success(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(
        hongkong_region,
        [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.SUCCESS],
        result=["/path/to/image1.jpg", "path/to/image2.jpg"],
    )
    job = Job(task_id="t1", region_id=hongkong_region.id)
    on_update = AsyncMock()

    urls = await _poller(client, fake_clock).run(job, on_update=on_update)

    assert urls == [
        "https://www.runninghub.ai/path/to/image1.jpg",
        "https://www.runninghub.ai/path/to/image2.jpg",
    ]
    assert client.get_status.await_count == 3
    assert client.get_result.await_count == 1
    # 首次查询立即发出，之后按倍数退避，成功后等待 result_delay
    assert fake_clock.sleeps == [5.0, 10.0, 3.0]
    assert job.status == JobStatus.SUCCESS
    assert job.poll_count == 3
    assert job.last_polled_at is not None
    assert job.result_urls == urls
    assert job.error is None
    # RUNNING、SUCCESS 两次状态变化 + 一次终态结果
    assert on_update.await_count == 3


@pytest.mark.asyncio
async def test_failed_on_first_poll_stops(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(hongkong_region, [JobStatus.FAILED])
    job = Job(task_id="t1", region_id=hongkong_region.id)

    with pytest.raises(TaskFailedError) as exc_info:
        await _poller(client, fake_clock).run(job)

    assert client.get_status.await_count == 1
    assert client.get_result.await_count == 0
    assert fake_clock.sleeps == []
    assert exc_info.value.last_status == "FAILED"
    assert job.error is exc_info.value


@pytest.mark.asyncio
async def test_cancelled_by_provider(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(hongkong_region, [JobStatus.RUNNING, JobStatus.CANCELLED])

    with pytest.raises(TaskCancelledError):
        await _poller(client, fake_clock).run(Job(task_id="t1", region_id=hongkong_region.id))

    assert client.cancel.await_count == 0


@pytest.mark.asyncio
async def test_deadline_raises_timeout_with_last_status(
    hongkong_region: RegionConfig, fake_clock
) -> None:
    client = _fake_client(hongkong_region, lambda _task_id: JobStatus.RUNNING)
    policy = PollingPolicy(
        initial_interval=5.0,
        max_interval=30.0,
        backoff_multiplier=2.0,
        jitter_ratio=0.0,
        timeout=12.0,
        max_transient_retries=3,
        result_delay=0.0,
    )
    job = Job(task_id="t1", region_id=hongkong_region.id)

    with pytest.raises(PollingTimeoutError) as exc_info:
        await _poller(client, fake_clock, policy).run(job)

    # 第二次等待被截断到截止时间
    assert fake_clock.sleeps == [5.0, 7.0]
    assert client.get_status.await_count == 2
    assert exc_info.value.last_status == "RUNNING"
    assert exc_info.value.poll_count == 2
    assert exc_info.value.elapsed_seconds == pytest.approx(12.0)
    assert job.timed_out is True
    assert client.cancel.await_count == 0


@pytest.mark.asyncio
async def test_transient_errors_are_retried(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(
        hongkong_region,
        [
            TransientNetworkError("timeout"),
            TransientNetworkError("reset"),
            JobStatus.RUNNING,
            JobStatus.SUCCESS,
        ],
        result=[],
    )
    job = Job(task_id="t1", region_id=hongkong_region.id)

    assert await _poller(client, fake_clock).run(job) == []
    assert fake_clock.sleeps == [5.0, 10.0, 5.0, 3.0]
    assert job.poll_count == 2
    assert job.status == JobStatus.SUCCESS


@pytest.mark.asyncio
async def test_transient_errors_exhausted(hongkong_region: RegionConfig, fake_clock) -> None:
    last_error = TransientNetworkError("reset again")
    client = _fake_client(
        hongkong_region,
        [
            JobStatus.RUNNING,
            TransientNetworkError("timeout"),
            TransientNetworkError("reset"),
            TransientNetworkError("reset"),
            last_error,
        ],
    )
    job = Job(task_id="t1", region_id=hongkong_region.id)

    with pytest.raises(PollingTimeoutError) as exc_info:
        await _poller(client, fake_clock).run(job)

    assert exc_info.value.__cause__ is last_error
    assert exc_info.value.last_status == "RUNNING"
    # 临时错误不改变任务状态
    assert job.status == JobStatus.RUNNING
    assert job.poll_count == 1
    assert client.get_status.await_count == 5


@pytest.mark.asyncio
async def test_non_transient_error_propagates(hongkong_region: RegionConfig, fake_clock) -> None:
    error = ProviderError("bad envelope")
    client = _fake_client(hongkong_region, [JobStatus.RUNNING, error])

    with pytest.raises(ProviderError) as exc_info:
        await _poller(client, fake_clock).run(Job(task_id="t1", region_id=hongkong_region.id))

    assert exc_info.value is error
    assert client.get_status.await_count == 2


@pytest.mark.asyncio
async def test_backward_status_is_ignored(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(
        hongkong_region,
        [JobStatus.RUNNING, JobStatus.PENDING, JobStatus.SUCCESS],
        result={"out": "a.png"},
    )
    seen: list[JobStatus] = []
    job = Job(task_id="t1", region_id=hongkong_region.id)

    await _poller(client, fake_clock).run(job, on_update=lambda j: seen.append(j.status))

    assert seen == [JobStatus.RUNNING, JobStatus.SUCCESS, JobStatus.SUCCESS]
    assert job.result_urls == ["https://www.runninghub.ai/a.png"]


@pytest.mark.asyncio
async def test_interval_capped_at_max(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(hongkong_region, [JobStatus.RUNNING] * 4 + [JobStatus.SUCCESS], result=[])
    policy = PollingPolicy(
        initial_interval=5.0,
        max_interval=12.0,
        backoff_multiplier=2.0,
        jitter_ratio=0.0,
        timeout=300.0,
        max_transient_retries=3,
        result_delay=3.0,
    )

    await _poller(client, fake_clock, policy).run(Job(task_id="t1", region_id=hongkong_region.id))

    assert fake_clock.sleeps == [5.0, 10.0, 12.0, 12.0, 3.0]


@pytest.mark.asyncio
async def test_jitter_stays_within_ratio(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(hongkong_region, [JobStatus.RUNNING] * 5 + [JobStatus.SUCCESS], result=[])
    policy = PollingPolicy(
        initial_interval=10.0,
        max_interval=10.0,
        backoff_multiplier=1.0,
        jitter_ratio=0.1,
        timeout=300.0,
        max_transient_retries=3,
        result_delay=0.0,
    )
    poller = PollingOrchestrator(client, policy=policy, clock=fake_clock, rng=random.Random(7))  # type: ignore[arg-type]

    await poller.run(Job(task_id="t1", region_id=hongkong_region.id))

    assert len(fake_clock.sleeps) == 5
    assert all(9.0 <= delay <= 11.0 for delay in fake_clock.sleeps)


@pytest.mark.asyncio
async def test_cancel_token_before_first_poll(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(hongkong_region, [JobStatus.RUNNING])
    token = CancellationToken()
    token.cancel("用户关闭页面")
    job = Job(task_id="t1", region_id=hongkong_region.id)

    with pytest.raises(OperationCancelledError) as exc_info:
        await _poller(client, fake_clock).run(job, cancel_token=token)

    client.cancel.assert_awaited_once_with("t1")
    assert client.get_status.await_count == 0
    assert exc_info.value.remote_cancelled is True
    assert "用户关闭页面" in exc_info.value.message


@pytest.mark.asyncio
async def test_cancel_token_observed_at_poll_boundary(
    hongkong_region: RegionConfig, fake_clock
) -> None:
    client = _fake_client(hongkong_region, lambda _task_id: JobStatus.RUNNING)
    token = CancellationToken()

    def on_update(job: Job) -> None:
        if job.status == JobStatus.RUNNING:
            token.cancel()

    with pytest.raises(OperationCancelledError) as exc_info:
        await _poller(client, fake_clock).run(
            Job(task_id="t1", region_id=hongkong_region.id), cancel_token=token, on_update=on_update
        )

    assert client.get_status.await_count == 1
    assert exc_info.value.last_status == "RUNNING"


@pytest.mark.asyncio
async def test_remote_cancel_failure_is_not_raised(hongkong_region: RegionConfig, fake_clock) -> None:
    client = _fake_client(hongkong_region, [JobStatus.RUNNING])
    client.cancel = AsyncMock(side_effect=ProviderError("Task cannot be cancelled"))
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError) as exc_info:
        await _poller(client, fake_clock).run(
            Job(task_id="t1", region_id=hongkong_region.id), cancel_token=token
        )

    assert exc_info.value.remote_cancelled is False


@pytest.mark.asyncio
async def test_already_successful_job_fetches_results(
    hongkong_region: RegionConfig, fake_clock
) -> None:
    client = _fake_client(hongkong_region, [], result=["/x.png"])
    job = Job(task_id="t1", region_id=hongkong_region.id, status=JobStatus.SUCCESS)

    urls = await _poller(client, fake_clock).run(job)

    assert urls == ["https://www.runninghub.ai/x.png"]
    assert client.get_status.await_count == 0


def test_cancellation_token() -> None:
    token = CancellationToken()
    assert token.is_cancelled is False

    token.cancel("first")
    token.cancel("second")

    assert token.is_cancelled is True
    assert token.reason == "first"


@pytest.mark.asyncio
async def test_transient_errors_stop_at_deadline(hongkong_region: RegionConfig, fake_clock) -> None:
    def unreachable(_task_id: str) -> JobStatus:
        raise TransientNetworkError("connection reset")

    client = _fake_client(hongkong_region, unreachable)
    policy = PollingPolicy(
        initial_interval=5.0,
        max_interval=30.0,
        backoff_multiplier=2.0,
        jitter_ratio=0.0,
        timeout=20.0,
        max_transient_retries=100,
        result_delay=0.0,
    )
    job = Job(task_id="t1", region_id=hongkong_region.id)

    with pytest.raises(PollingTimeoutError) as exc_info:
        await _poller(client, fake_clock, policy).run(job)

    # 第三次退避本应等待 20s，被截断到截止时间
    assert fake_clock.sleeps == [5.0, 10.0, 5.0]
    assert client.get_status.await_count == 3
    assert job.status == JobStatus.PENDING
    assert job.poll_count == 0
    assert exc_info.value.last_status == "PENDING"
    assert exc_info.value.elapsed_seconds == pytest.approx(20.0)
