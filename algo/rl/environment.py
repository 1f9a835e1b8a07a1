"""强化学习交易环境（episodic MDP）。

交易结果不是由价格驱动的：非 HOLD 动作按 `win_probability` 做一次伯努利抽样，
盈亏固定为 ±1% × 仓位。这是刻意简化的占位模型，不代表真实成交。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from shared.models.models import (
    Action,
    ActionProposal,
    Candle,
    IndicatorSet,
    MarketState,
    TradingState,
)

PNL_FRACTION = 0.01
MAX_DRAWDOWN = 0.5
MAX_TRADES = 100
TARGET_MULTIPLE = 2.0


@dataclass(frozen=True)
class StepResult:
    reward: float
    next_state: TradingState
    done: bool
    info: dict[str, Any] = field(default_factory=dict)


class TradingEnvironment:
    """交易环境。

    Parameters
    ----------
    initial_balance:
        每个 episode 的初始资金。
    win_probability:
        模拟成交获胜概率。
    rng:
        numpy 随机数生成器（或种子），便于复现。
    """

    def __init__(
        self,
        initial_balance: float = 10000.0,
        win_probability: float = 0.5,
        rng: np.random.Generator | int | None = None,
    ):
        if initial_balance <= 0:
            raise ValueError("initial_balance must be > 0")
        if not 0.0 <= win_probability <= 1.0:
            raise ValueError("win_probability must be within [0, 1]")
        self.initial_balance = float(initial_balance)
        self.win_probability = float(win_probability)
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)
        self._wins = 0
        self.state = self.reset()

    def reset(self) -> TradingState:
        self._wins = 0
        self.state = TradingState(balance=self.initial_balance, equity=self.initial_balance)
        return self.state

    def is_done(self, state: TradingState) -> bool:
        return (
            state.drawdown > MAX_DRAWDOWN
            or state.trade_count > MAX_TRADES
            or state.balance >= self.initial_balance * TARGET_MULTIPLE
        )

    def step(
        self,
        action: ActionProposal,
        candle: Candle,
        market_state: MarketState,
        indicators: IndicatorSet,
    ) -> StepResult:
        """推进一步。

        Returns
        -------
        StepResult
            reward ∈ {-1, 0, +1}；info 含 trade_executed / pnl / price。
        """
        state = self.state
        reward = 0.0
        pnl = 0.0
        executed = action.action is not Action.HOLD and action.size > 0

        balance = state.balance
        trade_count = state.trade_count
        if executed:
            won = bool(self.rng.random() < self.win_probability)
            pnl = action.size * PNL_FRACTION * (1.0 if won else -1.0)
            reward = 1.0 if won else -1.0
            balance += pnl
            trade_count += 1
            if won:
                self._wins += 1

        drawdown = max(state.drawdown, (self.initial_balance - balance) / self.initial_balance, 0.0)
        next_state = replace(
            state,
            balance=balance,
            equity=balance,
            drawdown=drawdown,
            win_rate=(self._wins / trade_count * 100.0) if trade_count else 0.0,
            trade_count=trade_count,
            last_action=action.action,
            last_reward=reward,
            market_state=market_state,
            indicators=indicators,
        )
        self.state = next_state
        return StepResult(
            reward=reward,
            next_state=next_state,
            done=self.is_done(next_state),
            info={"trade_executed": executed, "pnl": pnl, "price": candle.close, "symbol": candle.symbol},
        )
