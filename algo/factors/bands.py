"""布林带与随机指标。"""

from __future__ import annotations

from typing import Iterable

from algo.factors.base import as_array, check_period, last_or_zero
from shared.models.models import BollingerBands, StochasticValue

NEUTRAL_STOCHASTIC = 50.0


def bollinger(values: Iterable[float], period: int = 20, k: float = 2.0) -> BollingerBands:
    """布林带：中轨 SMA，上下轨 ± k 倍总体标准差。

    历史不足时三条线都等于最后一个价格。
    """
    period = check_period(period)
    arr = as_array(values)
    if arr.size < period:
        last = last_or_zero(arr)
        return BollingerBands(upper=last, middle=last, lower=last)
    window = arr[-period:]
    middle = float(window.mean())
    std = float(window.std())
    return BollingerBands(upper=middle + k * std, middle=middle, lower=middle - k * std)


def _percent_k(highs, lows, closes, end: int, period: int) -> float:
    start = end - period
    highest = float(highs[start:end].max())
    lowest = float(lows[start:end].min())
    if highest == lowest:
        return NEUTRAL_STOCHASTIC
    value = (float(closes[end - 1]) - lowest) / (highest - lowest) * 100.0
    return min(100.0, max(0.0, value))


def stochastic(
    highs: Iterable[float],
    lows: Iterable[float],
    closes: Iterable[float],
    period: int = 14,
    smooth: int = 3,
) -> StochasticValue:
    """随机指标 %K/%D。%D 为最近 `smooth` 个 %K 的简单均值（可用多少算多少）。"""
    period = check_period(period)
    smooth = check_period(smooth, "smooth")
    h, l, c = as_array(highs), as_array(lows), as_array(closes)
    n = min(h.size, l.size, c.size)
    if n < period:
        return StochasticValue()
    h, l, c = h[-n:], l[-n:], c[-n:]

    ks = []
    for offset in range(smooth):
        end = n - offset
        if end < period:
            break
        ks.append(_percent_k(h, l, c, end, period))
    return StochasticValue(k=ks[0], d=sum(ks) / len(ks))
