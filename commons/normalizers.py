# -*- coding: utf-8 -*-
# commons/normalizers.py
from __future__ import annotations

"""
normalizers
-----------
表单 / 命令行输入的字段级转换函数。
约定：func(value) -> new_value，不合法时返回 None，不抛异常。
"""

from typing import Any, Optional


def empty_to_none(x: Any) -> Any:
    """将空串（含全空白）转换为 None，其它值保持不变。"""
    return None if x is None or (isinstance(x, str) and x.strip() == "") else x


def to_float_or_none(x: Any) -> Optional[float]:
    """
    把值尽量转为 float；空串/None/非法值返回 None：
    - "21.5" -> 21.5
    - 21 -> 21.0
    - "" / "  " / None / "abc" -> None
    """
    try:
        return float(x) if x is not None and str(x).strip() != "" else None
    except (TypeError, ValueError):
        return None


def format_reading(x: float) -> str:
    """上报格式：宽度 4、两位小数（21.456 -> '21.46'，1.5 -> '1.50'）"""
    return f"{x:4.2f}"


def clean_outdoor_temp(x: Any) -> str:
    """
    wttr.in 的 %t 输出形如 '+12°C'，可能带换行/空白；
    空或 None 统一成 '?'（与设备端无数据时的占位一致）。
    """
    text = empty_to_none(x)
    return "?" if text is None else str(text).strip()
