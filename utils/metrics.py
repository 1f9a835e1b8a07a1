"""回测绩效指标计算。"""

from __future__ import annotations

import math
from statistics import mean, pstdev
from typing import Iterable, Sequence

from shared.models.models import BacktestResult, TradeRecord


def sharpe_ratio(values: Sequence[float]) -> float:
    """均值 / 总体标准差；样本不足或标准差为 0 时为 0（不年化）。"""
    if len(values) < 2:
        return 0.0
    sigma = pstdev(values)
    if sigma == 0:
        return 0.0
    return mean(values) / sigma


def max_drawdown_pct(equity: Iterable[float]) -> float:
    """权益曲线的最大峰谷回撤（百分比，0~100）。"""
    peak: float | None = None
    max_dd = 0.0
    for eq in equity:
        if peak is None or eq > peak:
            peak = eq
        if peak and peak > 0:
            max_dd = max(max_dd, (peak - eq) / peak * 100.0)
    return min(100.0, max_dd)


def _streaks(pnls: Sequence[float]) -> tuple[int, int]:
    best_win = best_loss = cur_win = cur_loss = 0
    for pnl in pnls:
        if pnl > 0:
            cur_win += 1
            cur_loss = 0
        else:
            cur_loss += 1
            cur_win = 0
        best_win = max(best_win, cur_win)
        best_loss = max(best_loss, cur_loss)
    return best_win, best_loss


def compute_trade_stats(trades: Sequence[TradeRecord], max_drawdown: float = 0.0) -> dict:
    """交易维度的补充指标（盈亏比、均盈均亏、连胜连亏、持仓时长等）。

    `risk_adjusted_return` = 总盈亏 / 最大回撤（百分比）；回撤为 0 且盈利时为 inf。
    """
    pnls = [t.pnl for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]

    total_profit = sum(wins)
    total_loss_abs = abs(sum(losses))
    profit_factor = (
        (total_profit / total_loss_abs)
        if total_loss_abs > 0
        else (math.inf if total_profit > 0 else 0.0)
    )

    durations = [(t.exit_time - t.entry_time).total_seconds() for t in trades]
    max_wins, max_losses = _streaks(pnls)
    total_pnl = sum(pnls)
    if max_drawdown > 0:
        risk_adjusted = total_pnl / max_drawdown
    else:
        risk_adjusted = math.inf if total_pnl > 0 else 0.0
    return {
        "profit_factor": profit_factor,
        "average_win": mean(wins) if wins else 0.0,
        "average_loss": mean(losses) if losses else 0.0,
        "largest_win": max(wins) if wins else 0.0,
        "largest_loss": min(losses) if losses else 0.0,
        "expectancy": mean(pnls) if pnls else 0.0,
        "average_duration_seconds": mean(durations) if durations else 0.0,
        "max_consecutive_wins": max_wins,
        "max_consecutive_losses": max_losses,
        "risk_adjusted_return": risk_adjusted,
    }


def build_backtest_result(
    trades: Sequence[TradeRecord],
    equity: Iterable[float],
) -> BacktestResult:
    """由交易记录与权益曲线一次性生成 BacktestResult（聚合字段全部推导）。

    Parameters
    ----------
    trades:
        全部已平仓交易（按平仓顺序）。
    equity:
        权益序列，首个值应为初始可用保证金。
    """
    trades = tuple(trades)
    winning = sum(1 for t in trades if t.pnl > 0)
    total = len(trades)
    drawdown = max_drawdown_pct(equity)
    return BacktestResult(
        total_trades=total,
        winning_trades=winning,
        losing_trades=total - winning,
        win_rate=(winning / total * 100.0) if total else 0.0,
        total_pnl=sum(t.pnl for t in trades),
        max_drawdown=drawdown,
        sharpe_ratio=sharpe_ratio([t.pnl_percent for t in trades]),
        trades=trades,
        stats=compute_trade_stats(trades, drawdown),
    )
