import pytest

from src.models.task import RegionConfig
from src.services.runninghub.result_resolver import (
    ResultResolver,
    looks_like_path,
    resolve,
    to_absolute_url,
)


def test_resolve_relative_and_rooted_paths(hongkong_region: RegionConfig) -> None:
    result = resolve(["/path/to/image1.jpg", "path/to/image2.jpg"], hongkong_region)

    assert result == [
        "https://www.runninghub.ai/path/to/image1.jpg",
        "https://www.runninghub.ai/path/to/image2.jpg",
    ]


def test_resolve_object_drops_metadata(china_region: RegionConfig) -> None:
    result = resolve(
        {"output1": "/path/to/result1.png", "metadata": "not an image", "seed": 42},
        china_region,
    )

    assert result == ["https://www.runninghub.cn/path/to/result1.png"]


def test_resolve_comfyui_output_objects(hongkong_region: RegionConfig) -> None:
    payload = [
        {"fileUrl": "https://rh-images.oss.example.com/output/a.png", "fileType": "png"},
        {"url": "output/b.webp"},
        {"nodeId": "9", "taskCostTime": "12"},
    ]

    assert ResultResolver().resolve(payload, hongkong_region) == [
        "https://rh-images.oss.example.com/output/a.png",
        "https://www.runninghub.ai/output/b.webp",
    ]


def test_resolve_keeps_order_and_absolute_urls(hongkong_region: RegionConfig) -> None:
    payload = ["b.png", "http://cdn.example.com/x", "/a.jpg"]

    assert resolve(payload, hongkong_region) == [
        "https://www.runninghub.ai/b.png",
        "http://cdn.example.com/x",
        "https://www.runninghub.ai/a.jpg",
    ]


@pytest.mark.parametrize("payload", [None, [], {}, "a.png", 42])
def test_resolve_empty_or_unexpected_payload(payload, hongkong_region: RegionConfig) -> None:
    assert resolve(payload, hongkong_region) == []


def test_to_absolute_url_single_slash() -> None:
    region = RegionConfig(
        id="x", name="x", base_url="https://www.runninghub.ai/", host_header="www.runninghub.ai"
    )

    assert to_absolute_url("/a.png", region) == "https://www.runninghub.ai/a.png"
    assert to_absolute_url("a.png", region) == "https://www.runninghub.ai/a.png"
    assert to_absolute_url("//cdn.example.com/a.png", region) == "https://cdn.example.com/a.png"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("/outputs/x", True),
        ("x.JPG", True),
        ("https://host/a", True),
        ("result.mp4?token=1", True),
        ("not an image", False),
        ("/outputs/my result.png", True),
        ("https://cdn.example.com/a b.png", True),
        ("final output.webp", True),
        ("success", False),
        ("", False),
        ("notes.txt", False),
    ],
)
def test_looks_like_path(value, expected) -> None:
    assert looks_like_path(value) is expected


def test_resolve_keeps_paths_containing_spaces(hongkong_region: RegionConfig) -> None:
    payload = {
        "image": "/outputs/my result.png",
        "preview": "https://cdn.example.com/a b.png",
        "note": "not an image",
    }

    assert resolve(payload, hongkong_region) == [
        "https://www.runninghub.ai/outputs/my result.png",
        "https://cdn.example.com/a b.png",
    ]
