"""
结果 URL 解析

上游 outputs 接口返回的 data 形态不固定：
- 路径字符串数组
- 对象数组（ComfyUI 工作流，含 fileUrl / url 字段）
- 键值对象，值里混有非路径的元数据
路径可能是绝对 URL，也可能是相对地区域名的路径。
"""

from __future__ import annotations

import posixpath
from collections.abc import Iterator, Mapping
from typing import Any
from urllib.parse import urlsplit

from src.models.task import RegionConfig

# 可识别的结果文件扩展名
RESULT_FILE_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".webp",
        ".gif",
        ".bmp",
        ".tif",
        ".tiff",
        ".mp4",
        ".mov",
        ".webm",
        ".mp3",
        ".wav",
        ".zip",
        ".glb",
    }
)

# ComfyUI 输出对象中的 URL 字段
_URL_FIELDS = ("fileUrl", "url")


def _is_absolute_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def looks_like_path(value: str) -> bool:
    """绝对 URL、以 / 开头、或带可识别扩展名的字符串视为结果路径"""
    candidate = value.strip()
    if not candidate:
        return False
    if _is_absolute_url(candidate) or candidate.startswith("/"):
        return True
    extension = posixpath.splitext(urlsplit(candidate).path)[1].lower()
    return extension in RESULT_FILE_EXTENSIONS


def to_absolute_url(path: str, region: RegionConfig) -> str:
    """相对路径拼接地区域名，保证两者之间恰好一个 /"""
    path = path.strip()
    if _is_absolute_url(path):
        return path
    if path.startswith("//"):
        scheme = urlsplit(region.base_url).scheme or "https"
        return f"{scheme}:{path}"
    return f"{region.base_url.rstrip('/')}/{path.lstrip('/')}"


def _iter_entries(raw_payload: Any) -> Iterator[Any]:
    if isinstance(raw_payload, Mapping):
        yield from raw_payload.values()
    elif isinstance(raw_payload, (list, tuple)):
        yield from raw_payload


def _entry_path(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        for field_name in _URL_FIELDS:
            value = entry.get(field_name)
            if isinstance(value, str):
                return value
    return None


def resolve(raw_payload: Any, region: RegionConfig) -> list[str]:
    """将原始结果转换为有序的绝对 URL 列表；空结果返回 []"""
    urls: list[str] = []
    for entry in _iter_entries(raw_payload):
        path = _entry_path(entry)
        if path is not None and looks_like_path(path):
            urls.append(to_absolute_url(path, region))
    return urls


class ResultResolver:
    def resolve(self, raw_payload: Any, region: RegionConfig) -> list[str]:
        return resolve(raw_payload, region)
