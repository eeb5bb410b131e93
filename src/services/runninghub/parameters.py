"""
节点参数规范化

上游要求 nodeInfoList 中的 fieldValue 一律为字符串，传入数字（如 0.25）
会导致整个任务被拒绝（APIKEY_INVALID_NODE_INFO）。每次提交前都必须经过这里，
不能假设调用方已经处理过。
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from src.core.exceptions import InvalidParameterError
from src.models.task import NodeFieldAssignment, ProviderId

_NODE_ID_KEYS = ("nodeId", "node_id")
_FIELD_NAME_KEYS = ("fieldName", "field_name")
_FIELD_VALUE_KEYS = ("fieldValue", "field_value")
_PARAM_KEY_KEYS = ("paramKey", "param_key")

_MISSING = object()


def stringify_value(value: Any) -> str:
    """
    与语言区域无关的规范字符串转换

    - bool -> "true" / "false"
    - int -> 十进制
    - 整数值的 float -> 整数形式（1.0 -> "1"）
    - 其他 float -> 最短往返表示的定点写法（0.25 -> "0.25"，1e-07 -> "0.0000001"）
    - Decimal -> 定点写法，保留原有精度（Decimal("1.50") -> "1.50"）

    输出中不会出现科学计数法
    """
    # bool 是 int 的子类，必须先判断
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidParameterError(f"fieldValue 不能是 {value!r}")
        if value.is_integer():
            return str(int(value))
        return format(Decimal(repr(value)), "f")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidParameterError(f"fieldValue 不能是 {value!r}")
        return format(value, "f")
    raise InvalidParameterError(
        f"fieldValue 类型不支持: {type(value).__name__} ({value!r})"
    )


def _pick(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return _MISSING


def _require_identifier(value: Any, label: str, index: int) -> str:
    if value is _MISSING or value is None:
        raise InvalidParameterError(f"nodeInfoList[{index}] 缺少 {label}")
    if isinstance(value, bool):
        raise InvalidParameterError(f"nodeInfoList[{index}].{label} 不能是布尔值")
    if isinstance(value, int):
        # 节点 ID 常以数字形式传入，统一转为字符串
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidParameterError(f"nodeInfoList[{index}].{label} 无效: {value!r}")
    return value.strip()


def normalize_assignment(raw: Any, index: int = 0) -> NodeFieldAssignment:
    if isinstance(raw, NodeFieldAssignment):
        node_id, field_name = raw.node_id, raw.field_name
        field_value: Any = raw.field_value
        param_key = raw.param_key
    elif isinstance(raw, Mapping):
        node_id = _pick(raw, _NODE_ID_KEYS)
        field_name = _pick(raw, _FIELD_NAME_KEYS)
        field_value = _pick(raw, _FIELD_VALUE_KEYS)
        param_key = _pick(raw, _PARAM_KEY_KEYS)
        if param_key is _MISSING:
            param_key = None
    else:
        raise InvalidParameterError(
            f"nodeInfoList[{index}] 必须是对象，收到 {type(raw).__name__}"
        )

    if field_value is _MISSING or field_value is None:
        raise InvalidParameterError(f"nodeInfoList[{index}] 缺少 fieldValue")

    try:
        value = stringify_value(field_value)
    except InvalidParameterError as exc:
        raise InvalidParameterError(f"nodeInfoList[{index}]: {exc.message}") from exc

    return NodeFieldAssignment(
        node_id=_require_identifier(node_id, "nodeId", index),
        field_name=_require_identifier(field_name, "fieldName", index),
        field_value=value,
        param_key=str(param_key) if param_key is not None else None,
    )


def normalize(raw_assignments: Iterable[Any] | None) -> list[NodeFieldAssignment]:
    """将调用方传入的节点参数转换为线协议要求的全字符串形式"""
    if raw_assignments is None:
        return []
    if isinstance(raw_assignments, (str, bytes, Mapping)):
        raise InvalidParameterError("nodeInfoList 必须是数组")
    return [normalize_assignment(item, index) for index, item in enumerate(raw_assignments)]


def normalize_provider_id(value: Any) -> ProviderId:
    if isinstance(value, ProviderId):
        return value
    return ProviderId(value)


class ParameterNormalizer:
    """无状态参数规范化器，供编排器注入使用"""

    def normalize(self, raw_assignments: Iterable[Any] | None) -> list[NodeFieldAssignment]:
        return normalize(raw_assignments)

    def normalize_provider_id(self, value: Any) -> ProviderId:
        return normalize_provider_id(value)
