"""
全局HTTP客户端池管理

每个地区复用一个 httpx.AsyncClient：
1. base_url 与 Host 头按地区绑定，请求时只需传相对路径
2. Keep-alive 连接复用，减少 TCP/TLS 握手开销
3. 地区配置只读，客户端创建后不再修改
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from src.config.settings import Config, config
from src.core.logger import logger
from src.models.task import RegionConfig

# 模块级锁，避免并发首次创建时重复实例化
_region_clients_lock = asyncio.Lock()


def build_default_timeout(
    read_timeout: float | None = None, settings: Config | None = None
) -> httpx.Timeout:
    """未传 settings 时使用全局配置"""
    settings = settings or config
    return httpx.Timeout(
        connect=settings.http_connect_timeout,
        read=read_timeout if read_timeout is not None else settings.request_timeout,
        write=settings.http_write_timeout,
        pool=settings.http_pool_timeout,
    )


def build_region_headers(region: RegionConfig, *, json_body: bool = True) -> dict[str, str]:
    """
    上游按 Host 头区分地区，必须与地区域名一致

    multipart 上传不能带 application/json，否则 httpx 不会写入 boundary。
    """
    headers = {"Host": region.host_header}
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


class HTTPClientPool:
    """
    按地区缓存的 HTTP 客户端池

    管理可重用的 httpx.AsyncClient 实例，键为地区 ID。
    """

    _region_clients: dict[str, httpx.AsyncClient] = {}

    @classmethod
    def _create_client(cls, region: RegionConfig, **kwargs: Any) -> httpx.AsyncClient:
        client_config: dict[str, Any] = {
            "base_url": region.base_url,
            "headers": build_region_headers(region, json_body=False),
            "timeout": build_default_timeout(),
            "limits": httpx.Limits(
                max_connections=config.http_max_connections,
                max_keepalive_connections=config.http_keepalive_connections,
                keepalive_expiry=config.http_keepalive_expiry,
            ),
            "follow_redirects": True,
        }
        client_config.update(kwargs)
        return httpx.AsyncClient(**client_config)

    @classmethod
    async def get_region_client(cls, region: RegionConfig) -> httpx.AsyncClient:
        """
        获取地区客户端（异步并发安全）

        已关闭的客户端会被重新创建。
        """
        client = cls._region_clients.get(region.id)
        if client is not None and not client.is_closed:
            return client

        async with _region_clients_lock:
            # 双重检查
            client = cls._region_clients.get(region.id)
            if client is None or client.is_closed:
                client = cls._create_client(region)
                cls._region_clients[region.id] = client
                logger.info(
                    f"地区HTTP客户端已初始化: region={region.id}, base_url={region.base_url}, "
                    f"max_connections={config.http_max_connections}"
                )
        return client

    @classmethod
    def create_client(cls, region: RegionConfig, **kwargs: Any) -> httpx.AsyncClient:
        """
        创建一次性地区客户端（调用者负责关闭）

        kwargs 会覆盖默认配置，例如 transport=httpx.MockTransport(...)。
        """
        return cls._create_client(region, **kwargs)

    @classmethod
    async def close_all(cls) -> None:
        """关闭所有地区客户端"""
        for region_id, client in list(cls._region_clients.items()):
            try:
                await client.aclose()
                logger.debug(f"地区HTTP客户端已关闭: {region_id}")
            except Exception as e:
                logger.warning(f"关闭地区HTTP客户端失败: {region_id}, {e}")
        cls._region_clients.clear()

    @classmethod
    def get_pool_stats(cls) -> dict[str, Any]:
        return {
            "region_clients": sorted(cls._region_clients),
            "region_clients_count": len(cls._region_clients),
        }


async def close_http_clients() -> None:
    """关闭所有HTTP客户端的便捷函数"""
    await HTTPClientPool.close_all()
