"""成交量分布与支撑/阻力位。"""

from __future__ import annotations

from typing import Iterable

from algo.factors.base import as_array, check_period
from shared.models.models import SupportResistance, VolumeProfile

HIGH_VOLUME_MULTIPLIER = 1.5
LOW_VOLUME_MULTIPLIER = 0.5


def volume_profile(closes: Iterable[float], volumes: Iterable[float], window: int = 20) -> VolumeProfile:
    """按最近 `window` 根的平均成交量，把每根收盘价归入高/低成交量区。

    成交量 > 均量×1.5 为高量区，< 均量×0.5 为低量区；历史不足或均量为 0 时返回空。
    """
    window = check_period(window, "window")
    c, v = as_array(closes), as_array(volumes)
    n = min(c.size, v.size)
    if n < window:
        return VolumeProfile()
    c, v = c[-window:], v[-window:]
    avg = float(v.mean())
    if avg <= 0:
        return VolumeProfile()

    high_zones = tuple(float(px) for px, vol in zip(c, v) if vol > avg * HIGH_VOLUME_MULTIPLIER)
    low_zones = tuple(float(px) for px, vol in zip(c, v) if vol < avg * LOW_VOLUME_MULTIPLIER)
    return VolumeProfile(high_zones=high_zones, low_zones=low_zones)


def support_resistance(highs: Iterable[float], lows: Iterable[float], window: int = 20) -> SupportResistance:
    """最近 `window` 根内的局部极值：低点低于左右相邻为支撑，高点高于左右相邻为阻力。"""
    window = check_period(window, "window")
    h, l = as_array(highs), as_array(lows)
    n = min(h.size, l.size, window)
    if n < 3:
        return SupportResistance()
    h, l = h[-n:], l[-n:]

    support = []
    resistance = []
    for i in range(1, n - 1):
        if l[i] < l[i - 1] and l[i] < l[i + 1]:
            support.append(float(l[i]))
        if h[i] > h[i - 1] and h[i] > h[i + 1]:
            resistance.append(float(h[i]))
    return SupportResistance(support=tuple(support), resistance=tuple(resistance))
