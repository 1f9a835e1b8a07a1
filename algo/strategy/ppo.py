"""PPO 综合打分策略（PPO = 百分比价格振荡器）。

逐根对指标事件加分，多空各自累计，分高的一侧决定方向，两侧相等时 HOLD：

| 事件                               | 分值  |
|------------------------------------|-------|
| PPO 上穿 / 下穿零轴                | 0.30  |
| RSI 超卖 / 超买                    | 0.20  |
| MACD 柱状图翻转                    | 0.20  |
| 价格跌破下轨 / 升破上轨            | 0.20  |
| 随机指标 K、D 同时 <20 / >80       | 0.15  |
| 距支撑 / 阻力位 1% 以内            | 0.15  |
| 距高成交量区 1% 以内（不分方向）   | 0.10  |
| 趋势与方向一致                     | 0.20  |

波动率 > 0.02 时总置信度 ×0.8；置信度低于 `confidence_threshold` 时输出 HOLD。
买入要求 `ppo > -ppo_threshold`，卖出要求 `ppo < ppo_threshold`，否则同样输出 HOLD。
"""

from __future__ import annotations

from typing import Any

from shared.models.models import (
    Action,
    BacktestResult,
    Candle,
    IndicatorSet,
    MarketState,
    Signal,
    Trend,
)
from shared.utils.logging import setup_logger

RSI_CONSERVATIVE = (75.0, 25.0)
RSI_AGGRESSIVE = (65.0, 35.0)
RSI_STEP = 2.0
PPO_THRESHOLD_RANGE = (0.02, 0.1)
PPO_THRESHOLD_STEP = 0.01
CONFIDENCE_RANGE = (0.1, 0.5)
CONFIDENCE_STEP = 0.05


def _near(price: float, levels, tolerance: float) -> bool:
    if price <= 0:
        return False
    return any(abs(price - lvl) / price < tolerance for lvl in levels)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class PPOStrategy:
    """PPO 综合打分策略。

    Parameters
    ----------
    rsi_overbought / rsi_oversold:
        RSI 超买/超卖阈值。
    ppo_threshold:
        PPO 反向过滤阈值（百分比），方向与 PPO 相反且超过该值时不出信号。
    confidence_threshold:
        低于该置信度时强制 HOLD。
    base_size:
        建议仓位基数，实际 `base_size * (1 - ATR / price)`。
    level_tolerance:
        “接近”支撑/阻力/高量区的相对距离。
    """

    name = "ppo"

    def __init__(
        self,
        rsi_overbought: float = 70.0,
        rsi_oversold: float = 30.0,
        ppo_threshold: float = 0.05,
        confidence_threshold: float = 0.2,
        base_size: float = 0.1,
        level_tolerance: float = 0.01,
        high_volatility: float = 0.02,
        volatility_penalty: float = 0.8,
        logger=None,
    ):
        if rsi_oversold >= rsi_overbought:
            raise ValueError("rsi_oversold must be < rsi_overbought")
        if base_size < 0:
            raise ValueError("base_size must be >= 0")
        self.rsi_overbought = float(rsi_overbought)
        self.rsi_oversold = float(rsi_oversold)
        self.ppo_threshold = float(ppo_threshold)
        self.confidence_threshold = float(confidence_threshold)
        self.base_size = float(base_size)
        self.level_tolerance = float(level_tolerance)
        self.high_volatility = float(high_volatility)
        self.volatility_penalty = float(volatility_penalty)
        self.logger = logger or setup_logger("strategy")
        # 上一根的指标（按 symbol），用于判断穿越/翻转
        self._last: dict[str, IndicatorSet] = {}

    def reset(self) -> None:
        self._last.clear()

    def get_params(self) -> dict[str, Any]:
        return {
            "rsi_overbought": self.rsi_overbought,
            "rsi_oversold": self.rsi_oversold,
            "ppo_threshold": self.ppo_threshold,
            "confidence_threshold": self.confidence_threshold,
        }

    def size_hint(self, indicators: IndicatorSet, price: float) -> float:
        if price <= 0:
            return 0.0
        return max(0.0, self.base_size * (1.0 - indicators.atr / price))

    def on_candle(self, candle: Candle, indicators: IndicatorSet, market_state: MarketState) -> Signal:
        price = candle.close
        prev = self._last.get(candle.symbol)
        self._last[candle.symbol] = indicators

        buy = 0.0
        sell = 0.0
        neutral = 0.0
        reasons: list[str] = []

        if prev is not None:
            if indicators.ppo > 0 and prev.ppo <= 0:
                buy += 0.3
                reasons.append("ppo_cross_up")
            elif indicators.ppo < 0 and prev.ppo >= 0:
                sell += 0.3
                reasons.append("ppo_cross_down")

            hist, prev_hist = indicators.macd.histogram, prev.macd.histogram
            if hist > 0 and prev_hist <= 0:
                buy += 0.2
                reasons.append("macd_flip_up")
            elif hist < 0 and prev_hist >= 0:
                sell += 0.2
                reasons.append("macd_flip_down")

        if indicators.rsi < self.rsi_oversold:
            buy += 0.2
            reasons.append("rsi_oversold")
        elif indicators.rsi > self.rsi_overbought:
            sell += 0.2
            reasons.append("rsi_overbought")

        bands = indicators.bollinger
        if bands.upper > bands.lower:
            if price < bands.lower:
                buy += 0.2
                reasons.append("below_lower_band")
            elif price > bands.upper:
                sell += 0.2
                reasons.append("above_upper_band")

        stoch = indicators.stochastic
        if stoch.k < 20 and stoch.d < 20:
            buy += 0.15
            reasons.append("stoch_oversold")
        elif stoch.k > 80 and stoch.d > 80:
            sell += 0.15
            reasons.append("stoch_overbought")

        levels = indicators.support_resistance
        if _near(price, levels.support, self.level_tolerance):
            buy += 0.15
            reasons.append("near_support")
        if _near(price, levels.resistance, self.level_tolerance):
            sell += 0.15
            reasons.append("near_resistance")

        if _near(price, indicators.volume_profile.high_zones, self.level_tolerance):
            neutral += 0.1
            reasons.append("high_volume_zone")

        if buy > sell:
            action, confidence = Action.BUY, buy + neutral
            if market_state.trend is Trend.UP:
                confidence += 0.2
                reasons.append("trend_confirmed")
        elif sell > buy:
            action, confidence = Action.SELL, sell + neutral
            if market_state.trend is Trend.DOWN:
                confidence += 0.2
                reasons.append("trend_confirmed")
        else:
            action, confidence = Action.HOLD, 0.0

        if market_state.volatility_value > self.high_volatility:
            confidence *= self.volatility_penalty
        confidence = _clamp(confidence, 0.0, 1.0)

        # PPO 明显反向（超过 ppo_threshold）时不跟随
        if action is Action.BUY and indicators.ppo <= -self.ppo_threshold:
            action = Action.HOLD
            reasons.append("ppo_against")
        elif action is Action.SELL and indicators.ppo >= self.ppo_threshold:
            action = Action.HOLD
            reasons.append("ppo_against")

        if confidence < self.confidence_threshold:
            action = Action.HOLD

        return Signal(
            action=action,
            confidence=confidence,
            size_hint=self.size_hint(indicators, price),
            reason=",".join(reasons),
            symbol=candle.symbol,
            price=price,
            timestamp=candle.timestamp,
        )

    def optimize(
        self,
        backtest: BacktestResult,
        forward: BacktestResult,
        backtest_span: float = 3.0,
        forward_span: float = 0.25,
    ) -> dict[str, Any]:
        """对比回测与前推结果，调整阈值（慢速离线调参，不在逐根路径上）。

        Parameters
        ----------
        backtest / forward:
            回测与前推（forward test）结果。
        backtest_span / forward_span:
            两段数据覆盖的时长（同一单位），用于折算交易频率。

        Returns
        -------
        dict
            调整后的参数。
        """
        underperform = (
            forward.win_rate < backtest.win_rate or forward.max_drawdown > backtest.max_drawdown
        )
        if underperform:
            self.rsi_overbought = min(RSI_CONSERVATIVE[0], self.rsi_overbought + RSI_STEP)
            self.rsi_oversold = max(RSI_CONSERVATIVE[1], self.rsi_oversold - RSI_STEP)
            self.ppo_threshold = min(PPO_THRESHOLD_RANGE[1], self.ppo_threshold + PPO_THRESHOLD_STEP)
        else:
            self.rsi_overbought = max(RSI_AGGRESSIVE[0], self.rsi_overbought - RSI_STEP)
            self.rsi_oversold = min(RSI_AGGRESSIVE[1], self.rsi_oversold + RSI_STEP)
            self.ppo_threshold = max(PPO_THRESHOLD_RANGE[0], self.ppo_threshold - PPO_THRESHOLD_STEP)
        self.ppo_threshold = round(self.ppo_threshold, 6)

        bt_freq = backtest.total_trades / backtest_span if backtest_span > 0 else 0.0
        fwd_freq = forward.total_trades / forward_span if forward_span > 0 else 0.0
        if fwd_freq > bt_freq * 1.5:
            self.confidence_threshold = min(CONFIDENCE_RANGE[1], self.confidence_threshold + CONFIDENCE_STEP)
        elif fwd_freq < bt_freq * 0.5:
            self.confidence_threshold = max(CONFIDENCE_RANGE[0], self.confidence_threshold - CONFIDENCE_STEP)
        self.confidence_threshold = round(self.confidence_threshold, 6)

        params = self.get_params()
        self.logger.info("Strategy parameters optimized (underperform=%s): %s", underperform, params)
        return params
