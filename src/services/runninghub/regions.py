"""
地区路由

地区 ID -> RegionConfig 的纯查表，启动时构建一次，之后只读，
可在多个协程中并发调用。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from urllib.parse import urlsplit

from src.config.settings import Config, config
from src.core.exceptions import ConfigurationError, UnknownRegionError
from src.models.task import RegionConfig

REGION_CHINA = "china"
REGION_HONGKONG = "hongkong"


def make_region(region_id: str, name: str, base_url: str) -> RegionConfig:
    """根据域名构建地区配置，Host 头取自域名的 hostname（含非默认端口）"""
    parts = urlsplit(base_url.strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConfigurationError(f"地区 {region_id} 的域名无效: {base_url!r}")
    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"
    return RegionConfig(
        id=region_id,
        name=name,
        base_url=f"{parts.scheme}://{host}{parts.path.rstrip('/')}",
        host_header=host,
    )


def build_default_regions(settings: Config) -> list[RegionConfig]:
    return [
        make_region(REGION_CHINA, "中国大陆", settings.china_base_url),
        make_region(REGION_HONGKONG, "香港/澳门/台湾", settings.hongkong_base_url),
    ]


class RegionRouter:
    """地区路由器：未知地区是配置错误，不回退到默认地区"""

    def __init__(self, regions: Iterable[RegionConfig]):
        table: dict[str, RegionConfig] = {}
        for region in regions:
            if region.id in table:
                raise ConfigurationError(f"地区 ID 重复: {region.id}")
            table[region.id] = region
        if not table:
            raise ConfigurationError("至少需要配置一个地区")
        self._regions: Mapping[str, RegionConfig] = MappingProxyType(table)

    def resolve(self, region_id: str) -> RegionConfig:
        region = self._regions.get(region_id) if isinstance(region_id, str) else None
        if region is None:
            raise UnknownRegionError(str(region_id), self.region_ids())
        return region

    def region_ids(self) -> list[str]:
        return list(self._regions)

    def __contains__(self, region_id: object) -> bool:
        return region_id in self._regions


_region_router: RegionRouter | None = None


def get_region_router() -> RegionRouter:
    global _region_router
    if _region_router is None:
        _region_router = RegionRouter(build_default_regions(config))
    return _region_router
