"""MACD 与 PPO（百分比价格振荡器）。"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from algo.factors.base import as_array, check_period
from algo.factors.ema import ema, ema_series
from shared.models.models import MACDValue


def macd_line(values: Iterable[float], fast: int = 12, slow: int = 26) -> np.ndarray:
    """MACD 线序列（快 EMA − 慢 EMA，按最新一根右对齐）。"""
    fast = check_period(fast, "fast")
    slow = check_period(slow, "slow")
    if fast >= slow:
        raise ValueError("fast period must be < slow period")
    arr = as_array(values)
    slow_s = ema_series(arr, slow)
    if slow_s.size == 0:
        return np.empty(0, dtype=float)
    fast_s = ema_series(arr, fast)
    return fast_s[-slow_s.size:] - slow_s


def macd(values: Iterable[float], fast: int = 12, slow: int = 26, signal: int = 9) -> MACDValue:
    """MACD(fast, slow, signal)。

    历史不足 `slow` 根时三项全 0；MACD 线不足 `signal` 个点时信号线取 MACD 线最新值
    （即柱状图为 0）。
    """
    signal = check_period(signal, "signal")
    line = macd_line(values, fast, slow)
    if line.size == 0:
        return MACDValue()
    macd_val = float(line[-1])
    signal_val = ema(line, signal)
    return MACDValue(macd=macd_val, signal=signal_val, histogram=macd_val - signal_val)


def ppo(values: Iterable[float], period: int = 14) -> float:
    """PPO = (EMA(period) − EMA(2·period)) / EMA(2·period) × 100。

    历史不足 `2·period` 根或慢线为 0 时返回 0。
    """
    period = check_period(period)
    arr = as_array(values)
    slow_period = 2 * period
    if arr.size < slow_period:
        return 0.0
    slow_val = ema(arr, slow_period)
    if slow_val == 0:
        return 0.0
    fast_val = ema(arr, period)
    return (fast_val - slow_val) / slow_val * 100.0
