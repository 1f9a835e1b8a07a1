from datetime import datetime, timezone

import pytest

from algo.risk.manager import RiskManager
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

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


class _States:
    def __init__(self, state=None, error=None):
        self.state = state
        self.error = error

    def get_market_state(self, symbol):
        if self.error is not None:
            raise self.error
        return self.state


def _risk(**kwargs) -> RiskManager:
    return RiskManager(RiskConfig(), capital=10000.0, **kwargs)


def _position(risk: RiskManager, side=Side.LONG, entry=100.0, size=None, symbol="BTCUSDT") -> Position:
    stop = risk.stop_loss_price(entry, side)
    return Position(
        symbol=symbol,
        side=side,
        entry_price=entry,
        size=risk.position_size(entry, stop) if size is None else size,
        leverage=1.0,
        stop_loss=stop,
        take_profit=risk.take_profit_price(entry, side),
        entry_time=TS,
    )


def test_position_size_and_price_levels():
    risk = _risk()
    assert risk.position_size(100.0, 98.0) == pytest.approx(100.0)
    assert risk.position_size(100.0, 100.0) == 0.0
    assert risk.stop_loss_price(100.0, Side.LONG) == pytest.approx(98.0)
    assert risk.stop_loss_price(100.0, Side.SHORT) == pytest.approx(102.0)
    assert risk.take_profit_price(100.0, Side.LONG) == pytest.approx(104.0)
    assert risk.take_profit_price(100.0, Side.SHORT) == pytest.approx(96.0)


def test_trailing_stop_only_tightens():
    risk = _risk()
    assert risk.trailing_stop(110.0, Side.LONG, 98.0) == pytest.approx(108.9)
    assert risk.trailing_stop(99.0, Side.LONG, 98.5) == 98.5
    assert risk.trailing_stop(90.0, Side.SHORT, 102.0) == pytest.approx(90.9)
    assert risk.trailing_stop(101.0, Side.SHORT, 91.0) == 91.0


def test_stop_and_take_checks():
    risk = _risk()
    pos = _position(risk)
    assert risk.check_stop_loss(pos, 97.99)
    assert not risk.check_stop_loss(pos, 98.5)
    assert risk.check_take_profit(pos, 104.0)
    assert not risk.check_take_profit(pos, 103.0)

    short = _position(risk, side=Side.SHORT)
    assert risk.check_stop_loss(short, 102.5)
    assert risk.check_take_profit(short, 95.0)


def test_validate_accepts_risk_sized_position():
    risk = _risk()
    assert risk.validate(_position(risk))
    assert risk.validate(_position(risk, side=Side.SHORT))


def test_validate_rejections():
    risk = _risk()
    oversized = _position(risk, size=500.0)
    check = risk.validate(oversized)
    assert not check
    assert "exceeds risk-based size" in check.reason

    bad_stop = _position(risk)
    bad_stop.stop_loss = 101.0
    assert "Stop loss on wrong side" in risk.validate(bad_stop).reason

    leveraged = _position(risk)
    leveraged.leverage = 5.0
    assert "Leverage" in risk.validate(leveraged).reason

    risk.add_position(_position(risk))
    assert risk.validate(_position(risk, symbol="ETHUSDT")).reason == "Max open positions reached"


def test_duplicate_position_is_invariant_error():
    risk = _risk()
    risk.add_position(_position(risk))
    with pytest.raises(SimulationInvariantError):
        risk.add_position(_position(risk))
    assert risk.remove_position("BTCUSDT") is not None
    assert risk.open_position_count == 0


def test_assess_risk_uses_market_state():
    up = _risk(market_states=_States(MarketState(trend=Trend.UP)))
    assert up.assess_risk("BTCUSDT", Side.LONG, 100.0, 10.0)
    assert up.assess_risk("BTCUSDT", Side.SHORT, 100.0, 10.0).reason == "Trend is against SHORT"

    unknown = _risk(market_states=_States(None))
    assert not unknown.assess_risk("BTCUSDT", Side.LONG, 100.0, 10.0)

    wild = _risk(market_states=_States(MarketState(trend=Trend.UP, volatility_value=0.5)))
    assert wild.assess_risk("BTCUSDT", Side.LONG, 100.0, 10.0).reason == "Volatility too high"


def test_assess_risk_notional_and_lookup_failure():
    risk = _risk()
    assert "notional" in risk.assess_risk("BTCUSDT", Side.LONG, 100.0, 200.0).reason

    broken = _risk(market_states=_States(error=KeyError("boom")))
    with pytest.raises(RiskAssessmentError):
        broken.assess_risk("BTCUSDT", Side.LONG, 100.0, 1.0)


def test_daily_loss_limit_blocks_until_reset():
    risk = _risk()
    risk.update_daily_pnl(-300.0)
    assert not risk.daily_blocked
    risk.update_daily_pnl(-250.0)
    assert risk.daily_blocked
    assert risk.validate(_position(risk)).reason == "Daily loss limit reached"

    risk.reset_daily_pnl()
    assert not risk.daily_blocked
    assert risk.daily_pnl == 0.0


def test_adjust_action_sizes_and_blocks():
    risk = _risk()
    state = TradingState(balance=10000.0, equity=10000.0)

    held = risk.adjust_action(ActionProposal(Action.HOLD, 0.9, 5.0), state)
    assert held.action is Action.HOLD and held.size == 0.0

    buy = risk.adjust_action(ActionProposal(Action.BUY, 0.5), state)
    assert buy.action is Action.BUY
    assert buy.size == pytest.approx(5000.0)

    capped = risk.adjust_action(ActionProposal(Action.SELL, 1.0), state)
    assert capped.size == pytest.approx(10000.0)

    deep = TradingState(balance=7000.0, equity=7000.0, drawdown=0.3)
    assert risk.adjust_action(ActionProposal(Action.BUY, 1.0), deep).action is Action.HOLD


def test_risk_metrics():
    risk = _risk()
    risk.add_position(_position(risk))
    metrics = risk.risk_metrics()
    assert metrics["open_positions"] == 1.0
    assert metrics["used_margin"] == pytest.approx(10000.0)
    assert metrics["available_margin"] == pytest.approx(0.0)
    assert metrics["total_risk"] == pytest.approx(200.0)
