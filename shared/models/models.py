"""核心数据结构：Candle/IndicatorSet/MarketState/Signal/Position/TradeRecord 等。

约定：
- 行情与派生数据（Candle/IndicatorSet/MarketState/Signal/TradeRecord）一律不可变；
- Position 仅允许移动止损（trailing stop）时修改 `stop_loss`；
- TradingState 每步整体替换（`dataclasses.replace`），不做原地累加。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Action(Enum):
    """方向性动作。"""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def side(self) -> "Side | None":
        if self is Action.BUY:
            return Side.LONG
        if self is Action.SELL:
            return Side.SHORT
        return None


class Side(Enum):
    """持仓方向。"""

    LONG = "LONG"
    SHORT = "SHORT"


class Trend(Enum):
    UP = "UP"
    DOWN = "DOWN"
    SIDEWAYS = "SIDEWAYS"


class Level(Enum):
    """波动率/成交量的三档分类。"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Momentum(Enum):
    STRONG = "STRONG"
    WEAK = "WEAK"
    NEUTRAL = "NEUTRAL"


class Regime(Enum):
    BULL = "BULL"
    BEAR = "BEAR"


@dataclass(frozen=True)
class Candle:
    """K 线数据（OHLCV）。"""

    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MACDValue:
    macd: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


@dataclass(frozen=True)
class EMAPair:
    short: float = 0.0
    long: float = 0.0


@dataclass(frozen=True)
class BollingerBands:
    upper: float = 0.0
    middle: float = 0.0
    lower: float = 0.0


@dataclass(frozen=True)
class StochasticValue:
    k: float = 50.0
    d: float = 50.0


@dataclass(frozen=True)
class VolumeProfile:
    """高/低成交量区间对应的收盘价。"""

    high_zones: tuple[float, ...] = ()
    low_zones: tuple[float, ...] = ()


@dataclass(frozen=True)
class SupportResistance:
    support: tuple[float, ...] = ()
    resistance: tuple[float, ...] = ()


@dataclass(frozen=True)
class IndicatorSet:
    """一根 K 线对应的全部技术指标快照。

    历史不足时各字段为中性默认值（RSI=50、MACD 全 0、随机指标 50/50 等），不会出现 NaN。
    """

    price: float = 0.0
    rsi: float = 50.0
    macd: MACDValue = field(default_factory=MACDValue)
    ppo: float = 0.0
    ema: EMAPair = field(default_factory=EMAPair)
    bollinger: BollingerBands = field(default_factory=BollingerBands)
    stochastic: StochasticValue = field(default_factory=StochasticValue)
    atr: float = 0.0
    volume_profile: VolumeProfile = field(default_factory=VolumeProfile)
    support_resistance: SupportResistance = field(default_factory=SupportResistance)
    pattern: str = "none"

    @classmethod
    def neutral(cls, price: float = 0.0) -> "IndicatorSet":
        return cls(
            price=price,
            ema=EMAPair(short=price, long=price),
            bollinger=BollingerBands(upper=price, middle=price, lower=price),
        )


@dataclass(frozen=True)
class MarketState:
    """单个 symbol 的市场状态分类结果。

    `volatility_value`/`volume_ratio` 保留分类前的数值，供阈值判断使用。
    """

    trend: Trend = Trend.SIDEWAYS
    volatility: Level = Level.LOW
    volume: Level = Level.MEDIUM
    momentum: Momentum = Momentum.NEUTRAL
    regime: Regime = Regime.BEAR
    volatility_value: float = 0.0
    volume_ratio: float = 1.0
    timestamp: datetime | None = None


@dataclass(frozen=True)
class Signal:
    """策略输出：方向 + 置信度 + 建议仓位。"""

    action: Action
    confidence: float
    size_hint: float = 0.0
    reason: str = ""
    symbol: str = ""
    price: float = 0.0
    timestamp: datetime | None = None


@dataclass
class Position:
    """模拟持仓。每个 symbol 最多一个。"""

    symbol: str
    side: Side
    entry_price: float
    size: float
    leverage: float
    stop_loss: float
    take_profit: float
    entry_time: datetime

    @property
    def notional(self) -> float:
        return self.entry_price * self.size


@dataclass(frozen=True)
class TradeRecord:
    """已平仓交易记录（每个 Position 平仓时生成一次）。"""

    symbol: str
    side: Side
    entry_price: float
    exit_price: float
    entry_time: datetime
    exit_time: datetime
    size: float
    pnl: float
    pnl_percent: float
    exit_reason: str = ""


@dataclass(frozen=True)
class BacktestResult:
    """回测汇总。聚合字段由 trades 推导，构建见 `utils.metrics.build_backtest_result`。"""

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    max_drawdown: float
    sharpe_ratio: float
    trades: tuple[TradeRecord, ...] = ()
    stats: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionProposal:
    """待风控调整的动作（学习环境使用）。"""

    action: Action
    confidence: float = 0.0
    size: float = 0.0


@dataclass(frozen=True)
class TradingState:
    """强化学习视角的账户 + 市场状态。每个 episode 一份，逐步替换。"""

    balance: float
    equity: float
    open_positions: int = 0
    drawdown: float = 0.0
    win_rate: float = 0.0
    trade_count: int = 0
    last_action: Action = Action.HOLD
    last_reward: float = 0.0
    market_state: MarketState = field(default_factory=MarketState)
    indicators: IndicatorSet = field(default_factory=IndicatorSet)


@dataclass(frozen=True)
class OrderRequest:
    """下单请求（paper 账户）。"""

    symbol: str
    side: Action
    size: float
    order_type: str = "market"
    price: float | None = None


@dataclass(frozen=True)
class OrderFill:
    """成交回报。"""

    order_id: str
    symbol: str
    side: Action
    size: float
    filled_price: float
    timestamp: datetime
