"""默认策略：EMA / MACD / RSI 三项投票。"""

from __future__ import annotations

from shared.models.models import Action, Candle, IndicatorSet, MarketState, Signal


class DefaultStrategy:
    """EMA/MACD/RSI 加权投票。

    价格相对长 EMA ±0.2，MACD 线相对信号线 ±0.3，RSI 超卖/超买 ±0.5；
    净得分 > `entry_score` 做多，< −`entry_score` 做空，置信度为净得分绝对值。
    """

    name = "default"

    def __init__(
        self,
        entry_score: float = 0.3,
        rsi_overbought: float = 70.0,
        rsi_oversold: float = 30.0,
        base_size: float = 0.1,
    ):
        if entry_score <= 0:
            raise ValueError("entry_score must be > 0")
        self.entry_score = entry_score
        self.rsi_overbought = rsi_overbought
        self.rsi_oversold = rsi_oversold
        self.base_size = base_size

    def reset(self) -> None:
        return None

    def on_candle(self, candle: Candle, indicators: IndicatorSet, market_state: MarketState) -> Signal:
        score = 0.0
        reasons: list[str] = []
        price = candle.close

        if price > indicators.ema.long:
            score += 0.2
            reasons.append("price>ema")
        elif price < indicators.ema.long:
            score -= 0.2
            reasons.append("price<ema")

        if indicators.macd.macd > indicators.macd.signal:
            score += 0.3
            reasons.append("macd_bullish")
        elif indicators.macd.macd < indicators.macd.signal:
            score -= 0.3
            reasons.append("macd_bearish")

        if indicators.rsi < self.rsi_oversold:
            score += 0.5
            reasons.append("rsi_oversold")
        elif indicators.rsi > self.rsi_overbought:
            score -= 0.5
            reasons.append("rsi_overbought")

        if score > self.entry_score:
            action = Action.BUY
        elif score < -self.entry_score:
            action = Action.SELL
        else:
            action = Action.HOLD

        return Signal(
            action=action,
            confidence=min(1.0, abs(score)),
            size_hint=self.base_size,
            reason=",".join(reasons),
            symbol=candle.symbol,
            price=price,
            timestamp=candle.timestamp,
        )
