"""指标计算的公共工具。

所有指标函数都是纯函数：输入按时间升序的序列，输出 float 或不可变结构；
历史长度不足时返回文档约定的中性默认值，不抛异常、不返回 NaN。
"""

from __future__ import annotations

from typing import Iterable

import numpy as np


def as_array(values: Iterable[float]) -> np.ndarray:
    """转成一维 float64 数组（拷贝，避免调用方原地修改）。"""
    if not isinstance(values, np.ndarray):
        values = list(values)
    return np.array(values, dtype=float).reshape(-1)


def check_period(period: int, name: str = "period") -> int:
    if int(period) <= 0:
        raise ValueError(f"{name} must be > 0")
    return int(period)


def last_or_zero(arr: np.ndarray) -> float:
    return float(arr[-1]) if arr.size else 0.0


def sma(values: Iterable[float], period: int) -> float:
    """简单移动平均；不足 period 时返回最后一个值（空序列为 0）。"""
    period = check_period(period)
    arr = as_array(values)
    if arr.size < period:
        return last_or_zero(arr)
    return float(arr[-period:].mean())
