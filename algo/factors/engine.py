"""指标引擎：按 symbol 维护有界 K 线窗口，每步整体重算 IndicatorSet。"""

from __future__ import annotations

from collections import deque
from typing import Sequence

import numpy as np

from algo.factors.atr import atr
from algo.factors.bands import bollinger, stochastic
from algo.factors.ema import ema
from algo.factors.levels import support_resistance, volume_profile
from algo.factors.macd import macd, ppo
from algo.factors.patterns import candlestick_pattern
from algo.factors.rsi import rsi
from shared.config.schema import IndicatorConfig
from shared.models.models import Candle, EMAPair, IndicatorSet
from shared.utils.logging import setup_logger


class IndicatorEngine:
    """技术指标引擎。

    Parameters
    ----------
    cfg:
        指标参数；缺省使用 `IndicatorConfig()`。
    logger:
        可选 logger。

    Notes
    -----
    - 每个 symbol 一个窗口（最多 `cfg.window` 根），互不影响；
    - 同一时间戳重复到达时覆盖最后一根，早于最后一根的 K 线直接丢弃。
    """

    def __init__(self, cfg: IndicatorConfig | None = None, logger=None):
        self.cfg = cfg or IndicatorConfig()
        self.logger = logger or setup_logger("indicators")
        self._windows: dict[str, deque[Candle]] = {}

    def window(self, symbol: str) -> tuple[Candle, ...]:
        return tuple(self._windows.get(symbol, ()))

    def reset(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._windows.clear()
        else:
            self._windows.pop(symbol, None)

    def update(self, candle: Candle) -> IndicatorSet:
        """追加一根 K 线并返回该 symbol 的最新指标。"""
        buf = self._windows.setdefault(candle.symbol, deque(maxlen=self.cfg.window))
        if buf and candle.timestamp <= buf[-1].timestamp:
            if candle.timestamp == buf[-1].timestamp:
                buf[-1] = candle
            else:
                self.logger.warning(
                    "Out-of-order candle ignored: %s %s <= %s",
                    candle.symbol,
                    candle.timestamp,
                    buf[-1].timestamp,
                )
        else:
            buf.append(candle)
        return self.compute(buf)

    def compute(self, candles: Sequence[Candle]) -> IndicatorSet:
        """对给定 K 线序列（时间升序）计算完整指标集。"""
        candles = list(candles)[-self.cfg.window:]
        if not candles:
            return IndicatorSet.neutral()

        cfg = self.cfg
        closes = np.fromiter((c.close for c in candles), dtype=float, count=len(candles))
        highs = np.fromiter((c.high for c in candles), dtype=float, count=len(candles))
        lows = np.fromiter((c.low for c in candles), dtype=float, count=len(candles))
        volumes = np.fromiter((c.volume for c in candles), dtype=float, count=len(candles))

        return IndicatorSet(
            price=float(closes[-1]),
            rsi=rsi(closes, cfg.rsi_period),
            macd=macd(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal),
            ppo=ppo(closes, cfg.ppo_period),
            ema=EMAPair(short=ema(closes, cfg.ema_short), long=ema(closes, cfg.ema_long)),
            bollinger=bollinger(closes, cfg.bollinger_period, cfg.bollinger_k),
            stochastic=stochastic(highs, lows, closes, cfg.stochastic_period, cfg.stochastic_smooth),
            atr=atr(highs, lows, closes, cfg.atr_period),
            volume_profile=volume_profile(closes, volumes, cfg.volume_window),
            support_resistance=support_resistance(highs, lows, cfg.levels_window),
            pattern=candlestick_pattern(candles[-2:]),
        )
