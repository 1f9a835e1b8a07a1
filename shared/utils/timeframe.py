"""K 线周期字符串解析。"""

from __future__ import annotations

import re

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_PATTERN = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$")


def interval_seconds(timeframe: str) -> int:
    """'1m' -> 60, '4h' -> 14400, '1d' -> 86400。"""
    match = _PATTERN.match(str(timeframe).lower())
    if not match:
        raise ValueError(f"Invalid timeframe: {timeframe}")
    value, unit = int(match.group(1)), match.group(2)
    if value <= 0:
        raise ValueError(f"Invalid timeframe: {timeframe}")
    return value * _UNIT_SECONDS[unit]
