"""持仓模拟器（回测核心循环）。

每个 symbol 一个状态机：FLAT -> OPEN -> FLAT，不分批、不加仓。每根 K 线：
1. 若有持仓，先按当前止损/止盈判断是否平仓，未平仓则收紧移动止损；
2. 更新指标与市场状态；
3. 生成信号；预热期过后、空仓且置信度达标时按风控仓位在收盘价开仓。
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable

from algo.factors.engine import IndicatorEngine
from algo.market.classifier import MarketStateClassifier
from algo.risk.manager import RiskManager
from algo.strategy.base import Strategy
from shared.errors import SimulationInvariantError
from shared.models.models import (
    Action,
    BacktestResult,
    Candle,
    Position,
    Side,
    Signal,
    TradeRecord,
)
from shared.utils.logging import setup_logger
from utils.metrics import build_backtest_result


def trade_pnl(side: Side, entry_price: float, exit_price: float, size: float) -> float:
    pnl = (exit_price - entry_price) * size
    return pnl if side is Side.LONG else -pnl


class PositionSimulator:
    """回测持仓模拟器。

    Parameters
    ----------
    strategy:
        信号策略（任意满足 Strategy 协议的实现）。
    indicators / classifier / risk:
        依赖注入的叶子组件；模拟器不创建它们，也不被它们反向引用。
    warmup_bars:
        每个 symbol 前多少根只用于积累指标，不开仓。
    entry_confidence:
        开仓所需的最低信号置信度。
    leverage:
        开仓杠杆（回测固定 1）。
    flatten_on_end:
        数据结束时是否按最后收盘价强制平掉剩余持仓。
    """

    def __init__(
        self,
        *,
        strategy: Strategy,
        indicators: IndicatorEngine,
        classifier: MarketStateClassifier,
        risk: RiskManager,
        warmup_bars: int = 100,
        entry_confidence: float = 0.7,
        leverage: float = 1.0,
        flatten_on_end: bool = False,
        logger=None,
    ):
        self.strategy = strategy
        self.indicators = indicators
        self.classifier = classifier
        self.risk = risk
        self.warmup_bars = int(warmup_bars)
        self.entry_confidence = float(entry_confidence)
        self.leverage = float(leverage)
        self.flatten_on_end = flatten_on_end
        self.logger = logger or setup_logger("backtest")

        self.initial_balance = self.risk.capital
        self.balance = self.initial_balance
        self.positions: dict[str, Position] = {}
        self.trades: list[TradeRecord] = []
        self.equity_curve: list[tuple[datetime | None, float]] = []
        self.last_prices: dict[str, float] = {}
        self._last_ts: dict[str, datetime] = {}
        self._bars_seen: dict[str, int] = {}
        self._current_day: date | None = None
        self._start_equity_curve()

    def _start_equity_curve(self) -> None:
        # 权益曲线以可用保证金为起点
        self.equity_curve = [(None, self.risk.risk_metrics()["available_margin"])]

    # ------------------------------------------------------------------
    def run(self, candles: Iterable[Candle]) -> BacktestResult:
        """按时间顺序跑完整段 K 线并返回汇总结果。"""
        for candle in candles:
            self.on_candle(candle)
        return self.finalize()

    def on_candle(self, candle: Candle) -> Signal:
        self._maybe_roll_day(candle.timestamp)
        price = candle.close
        self.last_prices[candle.symbol] = price
        self._last_ts[candle.symbol] = candle.timestamp

        position = self.positions.get(candle.symbol)
        if position is not None:
            reason = self._exit_reason(position, price)
            if reason:
                self._close(position, price, candle.timestamp, reason)
            else:
                position.stop_loss = self.risk.trailing_stop(price, position.side, position.stop_loss)

        indicators = self.indicators.update(candle)
        market_state = self.classifier.update(candle)
        signal = self.strategy.on_candle(candle, indicators, market_state)

        seen = self._bars_seen.get(candle.symbol, 0)
        self._bars_seen[candle.symbol] = seen + 1
        if seen < self.warmup_bars:
            return signal

        if (
            candle.symbol not in self.positions
            and signal.action is not Action.HOLD
            and signal.confidence >= self.entry_confidence
        ):
            self._open(candle, signal)
        return signal

    def finalize(self) -> BacktestResult:
        if self.flatten_on_end:
            for symbol, position in list(self.positions.items()):
                price = self.last_prices.get(symbol, position.entry_price)
                exit_time = self._last_ts.get(symbol, position.entry_time)
                self._close(position, price, exit_time, "end_of_data")
        result = build_backtest_result(self.trades, [eq for _, eq in self.equity_curve])
        self.logger.info(
            "Backtest finished: trades=%d win_rate=%.2f%% pnl=%.4f max_dd=%.2f%% sharpe=%.4f",
            result.total_trades,
            result.win_rate,
            result.total_pnl,
            result.max_drawdown,
            result.sharpe_ratio,
        )
        return result

    # ------------------------------------------------------------------
    def _maybe_roll_day(self, ts: datetime) -> None:
        day = ts.date()
        if self._current_day is None:
            self._current_day = day
            return
        if day != self._current_day:
            self._current_day = day
            self.risk.reset_daily_pnl(log=False)

    def _exit_reason(self, position: Position, price: float) -> str | None:
        if position.side is Side.LONG:
            stop_hit = price <= position.stop_loss
        else:
            stop_hit = price >= position.stop_loss
        if stop_hit:
            initial_stop = self.risk.stop_loss_price(position.entry_price, position.side)
            return "stop_loss" if position.stop_loss == initial_stop else "trailing_stop"
        if self.risk.check_take_profit(position, price):
            return "take_profit"
        return None

    def _open(self, candle: Candle, signal: Signal) -> None:
        side = signal.action.side
        if side is None:
            return
        if candle.symbol in self.positions:
            raise SimulationInvariantError(f"Position already open for {candle.symbol}")

        entry = candle.close
        stop_loss = self.risk.stop_loss_price(entry, side)
        size = self.risk.position_size(entry, stop_loss, self.leverage)
        if size <= 0:
            return
        position = Position(
            symbol=candle.symbol,
            side=side,
            entry_price=entry,
            size=size,
            leverage=self.leverage,
            stop_loss=stop_loss,
            take_profit=self.risk.take_profit_price(entry, side),
            entry_time=candle.timestamp,
        )
        check = self.risk.validate(position)
        if not check:
            self.logger.debug("Entry rejected for %s: %s", candle.symbol, check.reason)
            return

        self.risk.add_position(position)
        self.positions[candle.symbol] = position
        self.logger.debug(
            "Open %s %s size=%.6f @ %.4f (conf=%.2f, %s)",
            side.value,
            candle.symbol,
            size,
            entry,
            signal.confidence,
            signal.reason,
        )

    def _close(self, position: Position, price: float, ts: datetime, reason: str) -> TradeRecord:
        pnl = trade_pnl(position.side, position.entry_price, price, position.size)
        notional = position.entry_price * position.size
        record = TradeRecord(
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=price,
            entry_time=position.entry_time,
            exit_time=ts,
            size=position.size,
            pnl=pnl,
            pnl_percent=(pnl / notional * 100.0) if notional else 0.0,
            exit_reason=reason,
        )
        self.trades.append(record)
        del self.positions[position.symbol]

        self.balance += pnl
        self.risk.remove_position(position.symbol)
        self.risk.update_capital(self.balance)
        self.risk.update_daily_pnl(pnl)
        self.equity_curve.append((ts, self.balance))
        self.logger.debug("Close %s %s @ %.4f pnl=%.4f (%s)", position.side.value, position.symbol, price, pnl, reason)
        return record
