"""ATR（平均真实波幅）。"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from algo.factors.base import as_array, check_period
from algo.factors.ema import ema


def true_ranges(highs: Iterable[float], lows: Iterable[float], closes: Iterable[float]) -> np.ndarray:
    """从第二根开始的真实波幅序列。"""
    h, l, c = as_array(highs), as_array(lows), as_array(closes)
    n = min(h.size, l.size, c.size)
    if n < 2:
        return np.empty(0, dtype=float)
    h, l, c = h[-n:], l[-n:], c[-n:]
    prev_close = c[:-1]
    return np.maximum.reduce([h[1:] - l[1:], np.abs(h[1:] - prev_close), np.abs(l[1:] - prev_close)])


def atr(highs: Iterable[float], lows: Iterable[float], closes: Iterable[float], period: int = 14) -> float:
    """ATR：前 `period` 个真实波幅均值做种子，随后按 EMA 方式平滑；不足时为 0。"""
    period = check_period(period)
    tr = true_ranges(highs, lows, closes)
    if tr.size < period:
        return 0.0
    return ema(tr, period)
