from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from algo.factors.engine import IndicatorEngine
from algo.market.classifier import MarketStateClassifier
from algo.risk.manager import RiskManager
from algo.strategy.ppo import PPOStrategy
from engine.simulator import PositionSimulator, trade_pnl
from shared.config.schema import RiskConfig
from shared.errors import SimulationInvariantError
from shared.models.models import Action, Candle, Side, Signal, Trend

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class _Scripted:
    """按 bar 序号输出预设动作的策略（置信度固定 1）。"""

    name = "scripted"

    def __init__(self, actions=None, default=Action.HOLD):
        self.actions = actions or {}
        self.default = default
        self.bar = 0

    def on_candle(self, candle, indicators, market_state):
        action = self.actions.get(self.bar, self.default)
        self.bar += 1
        return Signal(action=action, confidence=1.0, symbol=candle.symbol, price=candle.close)

    def reset(self):
        self.bar = 0


def _candles(closes, symbol="BTCUSDT", step=timedelta(hours=1), spread=1.0):
    return [
        Candle(symbol, T0 + step * i, c, c + spread, c - spread, c, 1.0)
        for i, c in enumerate(closes)
    ]


def _sim(strategy, *, capital=10000.0, **kwargs) -> PositionSimulator:
    classifier = MarketStateClassifier()
    return PositionSimulator(
        strategy=strategy,
        indicators=IndicatorEngine(),
        classifier=classifier,
        risk=RiskManager(RiskConfig(), capital=capital, market_states=classifier, suppress_warnings=True),
        **kwargs,
    )


def test_trade_pnl_sign_by_side():
    assert trade_pnl(Side.LONG, 100.0, 110.0, 2.0) == pytest.approx(20.0)
    assert trade_pnl(Side.SHORT, 100.0, 110.0, 2.0) == pytest.approx(-20.0)


def test_long_closes_at_stop_loss_on_next_bar():
    sim = _sim(_Scripted({0: Action.BUY}), warmup_bars=0)
    result = sim.run(_candles([100.0, 97.99]))

    assert result.total_trades == 1
    trade = result.trades[0]
    assert trade.side is Side.LONG
    assert trade.exit_reason == "stop_loss"
    assert trade.size == pytest.approx(100.0)
    assert trade.pnl == pytest.approx(-201.0)
    assert result.losing_trades == 1
    assert sim.balance == pytest.approx(9799.0)
    assert sim.positions == {}


def test_long_closes_at_take_profit():
    sim = _sim(_Scripted({0: Action.BUY}), warmup_bars=0)
    result = sim.run(_candles([100.0, 104.5]))
    assert result.trades[0].exit_reason == "take_profit"
    assert result.trades[0].pnl == pytest.approx(450.0)
    assert result.win_rate == 100.0


def test_trailing_stop_locks_in_gain():
    sim = _sim(_Scripted({0: Action.BUY}), warmup_bars=0)
    result = sim.run(_candles([100.0, 103.0, 101.5]))
    trade = result.trades[0]
    assert trade.exit_reason == "trailing_stop"
    assert trade.pnl == pytest.approx(150.0)


def test_short_closes_at_stop_loss():
    sim = _sim(_Scripted({0: Action.SELL}), warmup_bars=0)
    result = sim.run(_candles([100.0, 102.5]))
    trade = result.trades[0]
    assert trade.side is Side.SHORT
    assert trade.exit_reason == "stop_loss"
    assert trade.pnl == pytest.approx(-250.0)


def test_no_entries_during_warmup():
    sim = _sim(_Scripted(default=Action.BUY), warmup_bars=5)
    for candle in _candles([100.0] * 5):
        sim.on_candle(candle)
        assert sim.positions == {}
    sim.on_candle(_candles([100.0] * 6)[-1])
    assert sim.positions["BTCUSDT"].entry_time == T0 + timedelta(hours=5)


def test_single_position_per_symbol_and_flatten_on_end():
    sim = _sim(_Scripted(default=Action.BUY), warmup_bars=0, flatten_on_end=True)
    result = sim.run(_candles([100.0] * 10))
    assert result.total_trades == 1
    assert result.trades[0].exit_reason == "end_of_data"
    assert result.trades[0].exit_time == T0 + timedelta(hours=9)
    assert result.winning_trades + result.losing_trades == result.total_trades


def test_open_position_left_open_without_flatten():
    sim = _sim(_Scripted(default=Action.BUY), warmup_bars=0)
    result = sim.run(_candles([100.0] * 10))
    assert result.total_trades == 0
    assert "BTCUSDT" in sim.positions


def test_low_confidence_signal_does_not_enter():
    sim = _sim(_Scripted({0: Action.BUY}), warmup_bars=0, entry_confidence=1.5)
    sim.run(_candles([100.0, 100.0]))
    assert sim.positions == {}


def test_duplicate_open_raises_invariant_error():
    sim = _sim(_Scripted({0: Action.BUY}), warmup_bars=0)
    candle = _candles([100.0])[0]
    sim.on_candle(candle)
    with pytest.raises(SimulationInvariantError):
        sim._open(candle, Signal(Action.BUY, 1.0))


def test_day_roll_resets_daily_loss_block():
    sim = _sim(_Scripted(), warmup_bars=0)
    sim.on_candle(_candles([100.0])[0])
    sim.risk.update_daily_pnl(-1000.0)
    assert sim.risk.daily_blocked

    next_day = Candle("BTCUSDT", T0 + timedelta(days=1), 100.0, 101.0, 99.0, 100.0, 1.0)
    sim.on_candle(next_day)
    assert not sim.risk.daily_blocked


def test_equity_curve_starts_at_available_margin_and_tracks_balance():
    sim = _sim(_Scripted({0: Action.BUY, 2: Action.BUY}), warmup_bars=0)
    result = sim.run(_candles([100.0, 104.5, 100.0, 97.0]))
    assert sim.equity_curve[0] == (None, 10000.0)
    assert sim.equity_curve[-1][1] == pytest.approx(sim.balance)
    assert result.total_pnl == pytest.approx(sum(t.pnl for t in result.trades))
    assert result.total_trades == 2
    assert result.max_drawdown > 0


def test_rally_with_ppo_strategy():
    closes = np.linspace(100.0, 200.0, 150)
    sim = _sim(PPOStrategy())
    signals = []
    trends = []
    for candle in _candles(closes, spread=5.0):
        signals.append(sim.on_candle(candle))
        trends.append(sim.classifier.get_market_state("BTCUSDT").trend)
    result = sim.finalize()

    assert all(trend is Trend.UP for trend in trends[51:])
    assert any(s.action is Action.BUY and s.confidence >= 0.2 for s in signals)
    assert all(t.side is Side.LONG for t in result.trades)
    assert result.total_pnl >= 0.0

    assert sim.classifier.get_market_state("BTCUSDT").trend is Trend.UP
    assert result.winning_trades + result.losing_trades == result.total_trades
    assert result.total_pnl == pytest.approx(sum(t.pnl for t in result.trades))
    assert sim.balance == pytest.approx(10000.0 + result.total_pnl)
    assert 0.0 <= result.max_drawdown <= 100.0
    for position in sim.positions.values():
        assert position.side is Side.LONG or position.side is Side.SHORT
