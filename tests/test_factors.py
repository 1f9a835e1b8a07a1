from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from algo.factors.atr import atr, true_ranges
from algo.factors.bands import bollinger, stochastic
from algo.factors.base import sma
from algo.factors.ema import ema, ema_series
from algo.factors.engine import IndicatorEngine
from algo.factors.levels import support_resistance, volume_profile
from algo.factors.macd import macd, ppo
from algo.factors.patterns import BEARISH_ENGULFING, BULLISH_ENGULFING, DOJI, NONE, candlestick_pattern
from algo.factors.rsi import rsi
from shared.config.schema import IndicatorConfig
from shared.models.models import Candle, IndicatorSet

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _candle(i: int, close: float, *, open_=None, high=None, low=None, volume=1.0, symbol="BTCUSDT") -> Candle:
    return Candle(
        symbol=symbol,
        timestamp=T0 + timedelta(hours=i),
        open=close if open_ is None else open_,
        high=close + 1 if high is None else high,
        low=close - 1 if low is None else low,
        close=close,
        volume=volume,
    )


def test_ema_seeds_with_sma_and_aligns_to_last_bar():
    series = ema_series([1, 2, 3, 4, 5], 3)
    assert series.tolist() == pytest.approx([2.0, 2.5, 3.25, 4.125])
    assert ema([1, 2, 3, 4, 5], 3) == pytest.approx(4.125)


def test_ema_short_history_returns_last_price():
    assert ema([7.0, 8.0], 5) == 8.0
    assert ema([], 5) == 0.0
    assert ema_series([1.0], 3).size == 0


def test_period_must_be_positive():
    with pytest.raises(ValueError):
        ema([1, 2, 3], 0)
    with pytest.raises(ValueError):
        sma([1, 2, 3], -1)


def test_rsi_defaults_and_saturation():
    assert rsi([100.0] * 5, 14) == 50.0
    rising = list(range(1, 40))
    falling = list(range(40, 1, -1))
    assert rsi(rising, 14) == 100.0
    assert rsi(falling, 14) == pytest.approx(0.0)

    rng = np.random.default_rng(7)
    noisy = 100 + np.cumsum(rng.normal(0, 1, 200))
    value = rsi(noisy, 14)
    assert 0.0 <= value <= 100.0


def test_macd_needs_slow_period_and_tracks_direction():
    assert macd([100.0] * 10).histogram == 0.0
    assert macd([100.0] * 10).macd == 0.0

    up = macd(np.linspace(100, 150, 60))
    down = macd(np.linspace(150, 100, 60))
    assert up.macd > 0
    assert down.macd < 0
    assert up.histogram == pytest.approx(up.macd - up.signal)


def test_macd_rejects_fast_not_below_slow():
    with pytest.raises(ValueError):
        macd(np.linspace(1, 2, 60), fast=26, slow=12)


def test_ppo_percentage_and_short_history():
    assert ppo([100.0] * 20, 14) == 0.0
    assert ppo(np.linspace(100, 200, 60), 14) > 0
    assert ppo(np.linspace(200, 100, 60), 14) < 0
    assert ppo([0.0] * 40, 14) == 0.0


def test_bollinger_bands_order_and_short_history():
    short = bollinger([10.0, 11.0], 20)
    assert short.upper == short.middle == short.lower == 11.0

    flat = bollinger([5.0] * 20, 20)
    assert flat.upper == flat.middle == flat.lower == 5.0

    bands = bollinger(np.linspace(90, 110, 30), 20, 2.0)
    assert bands.upper > bands.middle > bands.lower
    window = np.linspace(90, 110, 30)[-20:]
    assert bands.middle == pytest.approx(window.mean())
    assert bands.upper - bands.middle == pytest.approx(2.0 * window.std())


def test_stochastic_bounds():
    assert stochastic([1.0], [1.0], [1.0], 14).k == 50.0
    flat = stochastic([5.0] * 20, [5.0] * 20, [5.0] * 20, 14, 3)
    assert (flat.k, flat.d) == (50.0, 50.0)

    closes = list(range(1, 21))
    highs = closes
    lows = [c - 1 for c in closes]
    at_high = stochastic(highs, lows, closes, 14, 3)
    assert at_high.k == pytest.approx(100.0)
    assert 0.0 <= at_high.d <= 100.0


def test_atr_constant_range():
    closes = [100.0] * 30
    highs = [101.0] * 30
    lows = [99.0] * 30
    assert true_ranges(highs, lows, closes).tolist() == [2.0] * 29
    assert atr(highs, lows, closes, 14) == pytest.approx(2.0)
    assert atr(highs[:5], lows[:5], closes[:5], 14) == 0.0


def test_volume_profile_marks_high_and_low_zones():
    closes = [100.0 + i for i in range(20)]
    volumes = [1.0] * 20
    volumes[5] = 10.0
    profile = volume_profile(closes, volumes, 20)
    assert profile.high_zones == (105.0,)
    assert profile.low_zones == ()

    assert volume_profile(closes[:5], volumes[:5], 20).high_zones == ()
    assert volume_profile(closes, [0.0] * 20, 20).high_zones == ()


def test_support_resistance_local_extrema():
    levels = support_resistance([5, 6, 5, 7, 5], [3, 2, 3, 1, 3], 20)
    assert levels.support == (2.0, 1.0)
    assert levels.resistance == (6.0, 7.0)
    assert support_resistance([1, 2], [1, 2], 20).support == ()


def test_candlestick_patterns():
    bear_prev = _candle(0, 9.0, open_=10.0)
    bull_cur = _candle(1, 10.5, open_=8.9)
    assert candlestick_pattern([bear_prev, bull_cur]) == BULLISH_ENGULFING

    bull_prev = _candle(0, 10.0, open_=9.0)
    bear_cur = _candle(1, 8.5, open_=10.2)
    assert candlestick_pattern([bull_prev, bear_cur]) == BEARISH_ENGULFING

    doji = _candle(0, 10.05, open_=10.0, high=11.0, low=9.0)
    assert candlestick_pattern([doji]) == DOJI
    assert candlestick_pattern([]) == NONE


def test_indicator_engine_windows_per_symbol():
    engine = IndicatorEngine(IndicatorConfig(window=30))
    for i in range(40):
        engine.update(_candle(i, 100.0 + i))
        engine.update(_candle(i, 50.0, symbol="ETHUSDT"))

    assert len(engine.window("BTCUSDT")) == 30
    assert len(engine.window("ETHUSDT")) == 30
    latest = engine.update(_candle(40, 140.0))
    assert latest.price == 140.0
    assert 0.0 <= latest.rsi <= 100.0
    assert latest.ema.short > latest.ema.long


def test_indicator_engine_handles_duplicate_and_stale_candles():
    engine = IndicatorEngine()
    engine.update(_candle(0, 100.0))
    engine.update(_candle(1, 101.0))

    replaced = engine.update(_candle(1, 105.0))
    assert replaced.price == 105.0
    assert len(engine.window("BTCUSDT")) == 2

    stale = engine.update(_candle(0, 1.0))
    assert stale.price == 105.0
    assert len(engine.window("BTCUSDT")) == 2

    engine.reset("BTCUSDT")
    assert engine.window("BTCUSDT") == ()


def test_indicator_engine_short_history_is_neutral():
    engine = IndicatorEngine()
    ind = engine.update(_candle(0, 100.0))
    assert ind.rsi == 50.0
    assert ind.macd.histogram == 0.0
    assert ind.ppo == 0.0
    assert ind.atr == 0.0
    assert (ind.stochastic.k, ind.stochastic.d) == (50.0, 50.0)
    assert engine.compute([]) == IndicatorSet.neutral()
