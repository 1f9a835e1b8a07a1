from datetime import datetime, timezone

import pytest

from algo.strategy.base import Strategy, TunableStrategy
from algo.strategy.default import DefaultStrategy
from algo.strategy.ppo import PPOStrategy
from algo.strategy.registry import available_strategies, build_strategy, get_strategy_cls
from shared.config.schema import StrategyConfig
from shared.models.models import (
    Action,
    BacktestResult,
    BollingerBands,
    Candle,
    EMAPair,
    IndicatorSet,
    MACDValue,
    MarketState,
    StochasticValue,
    Trend,
)

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _candle(close: float = 100.0, symbol: str = "BTCUSDT") -> Candle:
    return Candle(symbol, TS, close, close + 1, close - 1, close, 1.0)


def _result(total: int = 10, win_rate: float = 50.0, drawdown: float = 10.0) -> BacktestResult:
    winning = int(round(total * win_rate / 100.0))
    return BacktestResult(
        total_trades=total,
        winning_trades=winning,
        losing_trades=total - winning,
        win_rate=win_rate,
        total_pnl=0.0,
        max_drawdown=drawdown,
        sharpe_ratio=0.0,
    )


def test_ppo_cross_with_oversold_rsi_and_trend_is_buy():
    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.0), MarketState())

    ind = IndicatorSet(price=100.0, ppo=0.1, rsi=25.0)
    sig = strat.on_candle(_candle(), ind, MarketState(trend=Trend.UP))
    assert sig.action is Action.BUY
    assert sig.confidence == pytest.approx(0.7)
    assert "ppo_cross_up" in sig.reason
    assert "trend_confirmed" in sig.reason


def test_ppo_cross_down_with_overbought_rsi_is_sell():
    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.0), MarketState())

    ind = IndicatorSet(price=100.0, ppo=-0.1, rsi=80.0)
    sig = strat.on_candle(_candle(), ind, MarketState(trend=Trend.DOWN))
    assert sig.action is Action.SELL
    assert sig.confidence == pytest.approx(0.7)


def test_ppo_cross_requires_sign_change():
    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=-0.5), MarketState())
    sig = strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.03), MarketState())
    assert sig.action is Action.BUY
    assert sig.confidence == pytest.approx(0.3)
    assert "ppo_cross_up" in sig.reason

    # 一直在零轴上方，没有穿越
    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.01), MarketState())
    sig = strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.06), MarketState())
    assert "ppo_cross_up" not in sig.reason
    assert sig.action is Action.HOLD

    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.4), MarketState())
    sig = strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=-0.02), MarketState())
    assert sig.action is Action.SELL
    assert "ppo_cross_down" in sig.reason


def test_ppo_against_direction_blocks_signal():
    strat = PPOStrategy(ppo_threshold=0.05)
    # RSI 超卖 + 随机指标超卖偏多，但 PPO 明显为负
    ind = IndicatorSet(price=100.0, ppo=-0.2, rsi=20.0, stochastic=StochasticValue(k=10.0, d=10.0))
    sig = strat.on_candle(_candle(), ind, MarketState())
    assert sig.action is Action.HOLD
    assert sig.confidence == pytest.approx(0.35)
    assert "ppo_against" in sig.reason

    ind = IndicatorSet(price=100.0, ppo=-0.01, rsi=20.0, stochastic=StochasticValue(k=10.0, d=10.0))
    assert PPOStrategy(ppo_threshold=0.05).on_candle(_candle(), ind, MarketState()).action is Action.BUY


def test_high_volatility_scales_confidence():
    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0), MarketState())
    ind = IndicatorSet(price=100.0, ppo=0.1, rsi=25.0)
    sig = strat.on_candle(_candle(), ind, MarketState(trend=Trend.UP, volatility_value=0.03))
    assert sig.confidence == pytest.approx(0.56)


def test_weak_evidence_holds():
    strat = PPOStrategy()
    ind = IndicatorSet(price=100.0, stochastic=StochasticValue(k=10.0, d=10.0))
    sig = strat.on_candle(_candle(), ind, MarketState())
    assert sig.action is Action.HOLD
    assert sig.confidence == pytest.approx(0.15)


def test_balanced_scores_hold():
    strat = PPOStrategy()
    # RSI 超卖（买 0.2）与升破上轨（卖 0.2）互相抵消
    ind = IndicatorSet(price=100.0, rsi=25.0, bollinger=BollingerBands(upper=90.0, middle=85.0, lower=80.0))
    sig = strat.on_candle(_candle(), ind, MarketState(trend=Trend.UP))
    assert sig.action is Action.HOLD
    assert sig.confidence == 0.0


def test_confidence_is_clamped_to_one():
    strat = PPOStrategy()
    strat.on_candle(_candle(), IndicatorSet(price=100.0, macd=MACDValue(histogram=-1.0)), MarketState())
    ind = IndicatorSet(
        price=100.0,
        ppo=0.5,
        rsi=10.0,
        macd=MACDValue(macd=1.0, signal=0.5, histogram=0.5),
        bollinger=BollingerBands(upper=120.0, middle=110.0, lower=100.5),
        stochastic=StochasticValue(k=5.0, d=5.0),
    )
    sig = strat.on_candle(_candle(), ind, MarketState(trend=Trend.UP))
    assert sig.action is Action.BUY
    assert sig.confidence == 1.0


def test_size_hint_shrinks_with_atr():
    strat = PPOStrategy(base_size=0.1)
    assert strat.size_hint(IndicatorSet(price=100.0, atr=2.0), 100.0) == pytest.approx(0.098)
    assert strat.size_hint(IndicatorSet(price=100.0, atr=2.0), 0.0) == 0.0


def test_cross_state_is_per_symbol_and_reset_clears_it():
    strat = PPOStrategy()
    strat.on_candle(_candle(symbol="ETHUSDT"), IndicatorSet(price=100.0), MarketState())
    # BTCUSDT 没有上一根，不能判定穿越
    sig = strat.on_candle(_candle(), IndicatorSet(price=100.0, ppo=0.1), MarketState())
    assert "ppo_cross_up" not in sig.reason

    strat.reset()
    sig = strat.on_candle(_candle(symbol="ETHUSDT"), IndicatorSet(price=100.0, ppo=0.1), MarketState())
    assert "ppo_cross_up" not in sig.reason


def test_optimize_tightens_after_underperforming_forward_test():
    strat = PPOStrategy()
    params = strat.optimize(_result(total=30, win_rate=60.0), _result(total=5, win_rate=40.0))
    assert params["rsi_overbought"] == 72.0
    assert params["rsi_oversold"] == 28.0
    assert params["ppo_threshold"] == pytest.approx(0.06)
    # 前推交易频率 20 > 回测 10 × 1.5
    assert params["confidence_threshold"] == pytest.approx(0.25)


def test_optimize_loosens_when_forward_holds_up():
    strat = PPOStrategy()
    params = strat.optimize(
        _result(total=30, win_rate=50.0, drawdown=10.0),
        _result(total=1, win_rate=60.0, drawdown=5.0),
    )
    assert params["rsi_overbought"] == 68.0
    assert params["rsi_oversold"] == 32.0
    assert params["ppo_threshold"] == pytest.approx(0.04)
    assert params["confidence_threshold"] == pytest.approx(0.15)


def test_optimize_respects_bounds():
    strat = PPOStrategy()
    bad_bt, bad_fwd = _result(win_rate=60.0), _result(win_rate=10.0, drawdown=50.0)
    for _ in range(20):
        params = strat.optimize(bad_bt, bad_fwd)
    assert params["rsi_overbought"] == 75.0
    assert params["rsi_oversold"] == 25.0
    assert params["ppo_threshold"] == pytest.approx(0.1)
    assert params["confidence_threshold"] <= 0.5


def test_default_strategy_votes():
    strat = DefaultStrategy()
    bullish = IndicatorSet(price=100.0, ema=EMAPair(short=99.0, long=95.0), macd=MACDValue(macd=1.0, signal=0.5))
    sig = strat.on_candle(_candle(100.0), bullish, MarketState())
    assert sig.action is Action.BUY
    assert sig.confidence == pytest.approx(0.5)

    bearish = IndicatorSet(
        price=100.0,
        rsi=80.0,
        ema=EMAPair(short=101.0, long=105.0),
        macd=MACDValue(macd=-1.0, signal=0.5),
    )
    sig = strat.on_candle(_candle(100.0), bearish, MarketState())
    assert sig.action is Action.SELL
    assert sig.confidence == pytest.approx(1.0)

    flat = IndicatorSet(price=100.0, ema=EMAPair(short=100.0, long=100.0))
    assert strat.on_candle(_candle(100.0), flat, MarketState()).action is Action.HOLD


def test_registry_builds_from_config():
    assert {"default", "ppo"} <= set(available_strategies())
    assert isinstance(build_strategy(None), PPOStrategy)

    cfg = StrategyConfig.model_validate({"type": "default", "entry_score": 0.4, "unused": 1})
    assert cfg.params == {"entry_score": 0.4, "unused": 1}
    strat = build_strategy(cfg)
    assert isinstance(strat, DefaultStrategy)
    assert strat.entry_score == 0.4

    ppo = build_strategy({"type": "ppo", "ppo_threshold": 0.07})
    assert ppo.ppo_threshold == 0.07
    assert isinstance(ppo, Strategy)
    assert isinstance(ppo, TunableStrategy)


def test_registry_unknown_strategy():
    with pytest.raises(ValueError, match="Unknown strategy"):
        get_strategy_cls("nope")
    with pytest.raises(ValueError):
        build_strategy(StrategyConfig(type="nope"))
