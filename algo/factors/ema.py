"""EMA（指数移动平均）。"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from algo.factors.base import as_array, check_period, last_or_zero


def ema_series(values: Iterable[float], period: int) -> np.ndarray:
    """EMA 序列。

    以前 `period` 个值的简单均值为种子，然后从第 `period` 个值（含）起逐个套用
    `ema = price * k + prev * (1 - k)`，`k = 2 / (period + 1)`。

    例如 period=3、输入 [1, 2, 3, 4, 5]：种子 2，随后 2.5、3.25、4.125。

    Returns
    -------
    np.ndarray
        种子在首位，之后每个元素对应一次更新；历史不足时为空数组。
        末元素总是对齐输入的最后一根。
    """
    period = check_period(period)
    arr = as_array(values)
    if arr.size < period:
        return np.empty(0, dtype=float)

    k = 2.0 / (period + 1)
    out = np.empty(arr.size - period + 2, dtype=float)
    prev = float(arr[:period].mean())
    out[0] = prev
    for j, price in enumerate(arr[period - 1:], start=1):
        prev = float(price) * k + prev * (1.0 - k)
        out[j] = prev
    return out


def ema(values: Iterable[float], period: int) -> float:
    """最新 EMA 值；历史不足时返回最后一个价格（空序列为 0）。"""
    arr = as_array(values)
    series = ema_series(arr, period)
    if series.size == 0:
        return last_or_zero(arr)
    return float(series[-1])
