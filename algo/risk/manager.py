"""风险管理：仓位计算、开仓校验、止损/止盈/移动止损、动作调整与日损限制。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from shared.config.schema import RiskConfig
from shared.errors import RiskAssessmentError, SimulationInvariantError
from shared.models.models import (
    Action,
    ActionProposal,
    MarketState,
    Position,
    Side,
    TradingState,
    Trend,
)
from shared.utils.logging import setup_logger

# 浮点比较容差：入场价 × (1 - 0.02) 反推距离时会有 1e-17 级误差
_EPS = 1e-9
MAX_SAFE_VOLATILITY = 0.1


@dataclass(frozen=True)
class RiskCheck:
    """风控结论。普通拒绝只返回 is_safe=False + 原因，不抛异常。"""

    is_safe: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.is_safe


class MarketStateProvider(Protocol):
    def get_market_state(self, symbol: str) -> MarketState | None:
        ...


class RiskManager:
    """风险管理器。

    Parameters
    ----------
    risk_cfg:
        风控配置（只读）。
    capital:
        当前资金，用于仓位与日损计算；平仓后由调用方 `update_capital` 同步。
    market_states:
        市场状态查询接口（通常是 MarketStateClassifier），仅 `assess_risk` 使用。
    suppress_warnings:
        是否抑制 warning/info 日志（回测常用）。
    """

    def __init__(
        self,
        risk_cfg: RiskConfig,
        capital: float,
        market_states: MarketStateProvider | None = None,
        suppress_warnings: bool = False,
        logger=None,
    ):
        self.cfg = risk_cfg
        self.capital = float(capital)
        self.market_states = market_states
        self.suppress_warnings = suppress_warnings
        self.logger = logger or setup_logger("risk")

        self.positions: dict[str, Position] = {}

        # 日损风控状态
        self.daily_pnl = 0.0
        self._daily_blocked = False        # 今天还允不允许开新仓
        self._daily_block_logged = False   # 避免重复刷 warning

    # ------------------------------------------------------------------
    # 资金与持仓登记
    # ------------------------------------------------------------------
    def update_capital(self, capital: float) -> None:
        self.capital = float(capital)

    @property
    def open_position_count(self) -> int:
        return len(self.positions)

    def add_position(self, position: Position) -> None:
        if position.symbol in self.positions:
            raise SimulationInvariantError(f"Position already open for {position.symbol}")
        self.positions[position.symbol] = position

    def remove_position(self, symbol: str) -> Position | None:
        return self.positions.pop(symbol, None)

    # ------------------------------------------------------------------
    # 仓位 / 价位
    # ------------------------------------------------------------------
    def position_size(self, entry_price: float, stop_loss: float, leverage: float = 1.0) -> float:
        """`capital × max_risk_per_trade / |entry − stop| × leverage`；止损距离为 0 时返回 0。"""
        distance = abs(entry_price - stop_loss)
        if distance <= 0 or self.capital <= 0:
            return 0.0
        return self.capital * self.cfg.max_risk_per_trade / distance * leverage

    def stop_loss_price(self, entry_price: float, side: Side) -> float:
        if side is Side.LONG:
            return entry_price * (1 - self.cfg.stop_loss_distance)
        return entry_price * (1 + self.cfg.stop_loss_distance)

    def take_profit_price(self, entry_price: float, side: Side) -> float:
        if side is Side.LONG:
            return entry_price * (1 + self.cfg.take_profit_distance)
        return entry_price * (1 - self.cfg.take_profit_distance)

    def trailing_stop(self, current_price: float, side: Side, stop: float) -> float:
        """移动止损：只朝有利方向收紧，从不放松。"""
        trail = self.cfg.trailing_stop_distance
        if side is Side.LONG:
            return max(stop, current_price * (1 - trail))
        return min(stop, current_price * (1 + trail))

    def check_stop_loss(self, position: Position, price: float) -> bool:
        """按入场价 ± 止损距离判断是否触发止损。"""
        threshold = self.stop_loss_price(position.entry_price, position.side)
        if position.side is Side.LONG:
            return price <= threshold
        return price >= threshold

    def check_take_profit(self, position: Position, price: float) -> bool:
        threshold = self.take_profit_price(position.entry_price, position.side)
        if position.side is Side.LONG:
            return price >= threshold
        return price <= threshold

    # ------------------------------------------------------------------
    # 校验
    # ------------------------------------------------------------------
    def _reject(self, reason: str) -> RiskCheck:
        if not self.suppress_warnings:
            self.logger.info("Risk rejected: %s", reason)
        return RiskCheck(False, reason)

    def validate(self, position: Position) -> RiskCheck:
        """开仓前校验一个候选持仓。"""
        if self._daily_blocked:
            return self._reject("Daily loss limit reached")
        if self.open_position_count >= self.cfg.max_open_positions:
            return self._reject("Max open positions reached")
        if position.leverage > self.cfg.max_leverage:
            return self._reject(f"Leverage {position.leverage} exceeds max {self.cfg.max_leverage}")
        if position.entry_price <= 0 or position.size <= 0:
            return self._reject("Entry price and size must be positive")

        allowed = self.position_size(position.entry_price, position.stop_loss, position.leverage)
        if position.size > allowed * (1 + _EPS):
            return self._reject(f"Requested size {position.size:.6f} exceeds risk-based size {allowed:.6f}")

        entry = position.entry_price
        if position.side is Side.LONG:
            stop_ok = position.stop_loss < entry
            take_ok = position.take_profit > entry
        else:
            stop_ok = position.stop_loss > entry
            take_ok = position.take_profit < entry
        if not stop_ok:
            return self._reject("Stop loss on wrong side of entry")
        if not take_ok:
            return self._reject("Take profit on wrong side of entry")

        if abs(entry - position.stop_loss) / entry > self.cfg.stop_loss_distance + _EPS:
            return self._reject("Stop loss distance exceeds maximum")
        if abs(position.take_profit - entry) / entry > self.cfg.take_profit_distance + _EPS:
            return self._reject("Take profit distance exceeds maximum")
        return RiskCheck(True)

    def assess_risk(
        self,
        symbol: str,
        side: Side,
        price: float,
        size: float,
        leverage: float = 1.0,
    ) -> RiskCheck:
        """综合评估一次开仓请求。

        检查顺序：持仓数 → 杠杆 → 名义价值 → 市场状况 → 日损。

        Raises
        ------
        RiskAssessmentError
            市场状态查询本身失败（基础设施错误）。
        """
        if self.open_position_count >= self.cfg.max_open_positions:
            return self._reject("Max open positions reached")
        if leverage > self.cfg.max_leverage:
            return self._reject(f"Leverage {leverage} exceeds max {self.cfg.max_leverage}")

        notional = price * size * leverage
        if notional > self.capital * self.cfg.max_leverage * (1 + _EPS):
            return self._reject(f"Position notional {notional:.2f} exceeds leveraged capital")

        if self.market_states is not None:
            try:
                state = self.market_states.get_market_state(symbol)
            except Exception as exc:
                self.logger.error("Market state lookup failed for %s: %s", symbol, exc)
                raise RiskAssessmentError(f"Market state lookup failed for {symbol}") from exc
            if state is None:
                return self._reject(f"No market state for {symbol}")
            if side is Side.LONG and state.trend is Trend.DOWN:
                return self._reject("Trend is against LONG")
            if side is Side.SHORT and state.trend is Trend.UP:
                return self._reject("Trend is against SHORT")
            if state.volatility_value > MAX_SAFE_VOLATILITY:
                return self._reject("Volatility too high")

        if self._daily_blocked:
            return self._reject("Daily loss limit reached")
        return RiskCheck(True)

    # ------------------------------------------------------------------
    # 学习环境的动作过滤
    # ------------------------------------------------------------------
    def adjust_action(self, proposal: ActionProposal, state: TradingState) -> ActionProposal:
        """按账户状态调整动作：满仓/回撤超限/日损触发时强制 HOLD，否则重算仓位。"""
        if proposal.action is Action.HOLD:
            return ActionProposal(Action.HOLD, proposal.confidence, 0.0)
        if (
            state.open_positions >= self.cfg.max_open_positions
            or state.drawdown > self.cfg.max_drawdown
            or self._daily_blocked
        ):
            return ActionProposal(Action.HOLD, proposal.confidence, 0.0)

        base = state.balance * self.cfg.max_risk_per_trade / self.cfg.stop_loss_distance
        size = base * max(0.0, proposal.confidence)
        size = min(size, state.balance * self.cfg.max_leverage)
        return ActionProposal(proposal.action, proposal.confidence, max(0.0, size))

    # ------------------------------------------------------------------
    # 日损
    # ------------------------------------------------------------------
    @property
    def daily_blocked(self) -> bool:
        return self._daily_blocked

    def update_daily_pnl(self, pnl: float) -> None:
        """累加当日已实现盈亏，超过 `capital × daily_loss_limit_pct` 后拦截新仓直到重置。"""
        self.daily_pnl += pnl
        limit = self.capital * self.cfg.daily_loss_limit_pct
        if self.daily_pnl <= -limit and not self._daily_blocked:
            self._daily_blocked = True
            if not self._daily_block_logged and not self.suppress_warnings:
                self.logger.warning("Daily loss limit reached (%.2f), block all new positions.", self.daily_pnl)
                self._daily_block_logged = True

    def reset_daily_pnl(self, log: bool = True) -> None:
        """跨日重置日损状态。"""
        self.daily_pnl = 0.0
        self._daily_blocked = False
        self._daily_block_logged = False
        if log and not self.suppress_warnings:
            self.logger.info("[RISK] Daily state reset.")

    def risk_metrics(self) -> dict[str, float]:
        total_risk = sum(abs(p.entry_price - p.stop_loss) * p.size for p in self.positions.values())
        used_margin = sum(p.notional / (p.leverage or 1.0) for p in self.positions.values())
        return {
            "total_risk": total_risk,
            "open_positions": float(self.open_position_count),
            "used_margin": used_margin,
            "available_margin": self.capital - used_margin,
        }
