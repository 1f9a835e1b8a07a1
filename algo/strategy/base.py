"""策略协议。

策略是“带标签的接口”：通过注册表按名字在构建时选出具体实现，调用方只依赖协议，
不依赖继承关系。
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from shared.models.models import BacktestResult, Candle, IndicatorSet, MarketState, Signal


@runtime_checkable
class Strategy(Protocol):
    """逐根 K 线产出一个 Signal。"""

    name: str

    def on_candle(self, candle: Candle, indicators: IndicatorSet, market_state: MarketState) -> Signal:
        ...

    def reset(self) -> None:
        ...


@runtime_checkable
class TunableStrategy(Strategy, Protocol):
    """支持离线调参（回测 vs 前推对比）的策略。"""

    def get_params(self) -> dict[str, Any]:
        ...

    def optimize(self, backtest: BacktestResult, forward: BacktestResult) -> dict[str, Any]:
        ...
