"""
时钟抽象

轮询循环通过注入的 Clock 读取时间、等待间隔，
测试中替换为可手动推进的假时钟，无需真实 sleep。
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        """单调递增时间（秒），用于计算截止时间和耗时"""
        ...

    async def sleep(self, seconds: float) -> None:
        """挂起当前协程 seconds 秒"""
        ...


class SystemClock:
    """生产环境时钟：time.monotonic + asyncio.sleep"""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


DEFAULT_CLOCK: Clock = SystemClock()

__all__ = ["Clock", "SystemClock", "DEFAULT_CLOCK"]
