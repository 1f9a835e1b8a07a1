"""两根 K 线形态识别。"""

from __future__ import annotations

from typing import Sequence

from shared.models.models import Candle

BULLISH_ENGULFING = "bullish_engulfing"
BEARISH_ENGULFING = "bearish_engulfing"
DOJI = "doji"
NONE = "none"

DOJI_BODY_RATIO = 0.1


def _is_doji(c: Candle) -> bool:
    rng = c.high - c.low
    return rng > 0 and abs(c.close - c.open) <= rng * DOJI_BODY_RATIO


def candlestick_pattern(candles: Sequence[Candle]) -> str:
    """识别最后两根 K 线的形态：看涨吞没 / 看跌吞没 / 十字星 / none。"""
    if not candles:
        return NONE
    cur = candles[-1]
    if len(candles) >= 2:
        prev = candles[-2]
        if (
            prev.close < prev.open
            and cur.close > cur.open
            and cur.open <= prev.close
            and cur.close >= prev.open
        ):
            return BULLISH_ENGULFING
        if (
            prev.close > prev.open
            and cur.close < cur.open
            and cur.open >= prev.close
            and cur.close <= prev.open
        ):
            return BEARISH_ENGULFING
    if _is_doji(cur):
        return DOJI
    return NONE
