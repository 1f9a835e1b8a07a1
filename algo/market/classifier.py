"""市场状态分类器：趋势 / 波动率 / 成交量 / 动量 / 牛熊。"""

from __future__ import annotations

from collections import deque

import numpy as np

from algo.factors.base import sma
from algo.factors.macd import macd
from shared.models.models import Candle, Level, MarketState, Momentum, Regime, Trend
from shared.utils.logging import setup_logger

DEFAULT_WINDOW = 100


def classify_volatility(value: float) -> Level:
    if value > 0.02:
        return Level.HIGH
    if value > 0.01:
        return Level.MEDIUM
    return Level.LOW


def classify_volume(ratio: float) -> Level:
    if ratio > 1.5:
        return Level.HIGH
    if ratio > 0.8:
        return Level.MEDIUM
    return Level.LOW


def return_volatility(closes: np.ndarray) -> float:
    """逐根收益率的总体标准差；不足两根时为 0。"""
    if closes.size < 2:
        return 0.0
    prev = closes[:-1]
    mask = prev != 0
    if not mask.any():
        return 0.0
    returns = (closes[1:][mask] - prev[mask]) / prev[mask]
    return float(returns.std())


class MarketStateClassifier:
    """按 symbol 维护最多 `window` 根 K 线，每次更新整体重算 MarketState。

    Parameters
    ----------
    window:
        每个 symbol 保留的 K 线数量上限。
    short_period / long_period:
        趋势判定的两条 SMA 周期。
    volume_window:
        成交量比值的均量窗口。
    """

    def __init__(
        self,
        window: int = DEFAULT_WINDOW,
        short_period: int = 20,
        long_period: int = 50,
        volume_window: int = 20,
        logger=None,
    ):
        if window < 2:
            raise ValueError("window must be >= 2")
        self.window = int(window)
        self.short_period = int(short_period)
        self.long_period = int(long_period)
        self.volume_window = int(volume_window)
        self.logger = logger or setup_logger("market-state")
        self._candles: dict[str, deque[Candle]] = {}
        self._states: dict[str, MarketState] = {}

    def update(self, candle: Candle) -> MarketState:
        buf = self._candles.setdefault(candle.symbol, deque(maxlen=self.window))
        if buf and candle.timestamp == buf[-1].timestamp:
            buf[-1] = candle
        elif buf and candle.timestamp < buf[-1].timestamp:
            self.logger.warning("Out-of-order candle ignored for %s at %s", candle.symbol, candle.timestamp)
            return self._states[candle.symbol]
        else:
            buf.append(candle)

        state = self._classify(list(buf))
        self._states[candle.symbol] = state
        return state

    def get_market_state(self, symbol: str) -> MarketState | None:
        return self._states.get(symbol)

    def reset(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._candles.clear()
            self._states.clear()
        else:
            self._candles.pop(symbol, None)
            self._states.pop(symbol, None)

    def _classify(self, candles: list[Candle]) -> MarketState:
        closes = np.fromiter((c.close for c in candles), dtype=float, count=len(candles))
        volumes = np.fromiter((c.volume for c in candles), dtype=float, count=len(candles))

        trend = Trend.UP if sma(closes, self.short_period) > sma(closes, self.long_period) else Trend.DOWN

        vol_value = return_volatility(closes)

        avg_volume = float(volumes[-self.volume_window:].mean())
        volume_ratio = float(volumes[-1]) / avg_volume if avg_volume > 0 else 1.0

        histogram = macd(closes).histogram
        if histogram > 0:
            momentum = Momentum.STRONG
        elif histogram < 0:
            momentum = Momentum.WEAK
        else:
            momentum = Momentum.NEUTRAL

        return MarketState(
            trend=trend,
            volatility=classify_volatility(vol_value),
            volume=classify_volume(volume_ratio),
            momentum=momentum,
            regime=Regime.BULL if trend is Trend.UP else Regime.BEAR,
            volatility_value=vol_value,
            volume_ratio=volume_ratio,
            timestamp=candles[-1].timestamp,
        )
