"""RSI（Wilder 平滑）。"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from algo.factors.base import as_array, check_period

NEUTRAL_RSI = 50.0


def rsi(values: Iterable[float], period: int = 14) -> float:
    """相对强弱指数，取值 [0, 100]。

    先用前 `period` 个涨跌幅的均值作为初始平均涨/跌，之后每根按
    `avg = (avg * (period - 1) + x) / period` 平滑。平均跌幅为 0 时饱和为 100；
    历史不足 `period + 1` 根时返回 50。
    """
    period = check_period(period)
    arr = as_array(values)
    if arr.size < period + 1:
        return NEUTRAL_RSI

    deltas = np.diff(arr)
    gains = np.clip(deltas, 0.0, None)
    losses = np.clip(-deltas, 0.0, None)

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + float(gain)) / period
        avg_loss = (avg_loss * (period - 1) + float(loss)) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    value = 100.0 - 100.0 / (1.0 + rs)
    return min(100.0, max(0.0, value))
