import pytest

from src.models.task import RegionConfig
from src.services.runninghub.regions import REGION_CHINA, REGION_HONGKONG, make_region


class FakeClock:
    """手动推进的时钟，sleep 只累加时间"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hongkong_region() -> RegionConfig:
    return make_region(REGION_HONGKONG, "香港/澳门/台湾", "https://www.runninghub.ai")


@pytest.fixture
def china_region() -> RegionConfig:
    return make_region(REGION_CHINA, "中国大陆", "https://www.runninghub.cn")
