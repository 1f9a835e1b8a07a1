import pytest

from shared.utils.timeframe import interval_seconds


@pytest.mark.parametrize(
    ("timeframe", "seconds"),
    [("1m", 60), ("15m", 900), ("4h", 14400), ("1d", 86400), ("1w", 604800), ("30s", 30)],
)
def test_interval_seconds(timeframe, seconds):
    assert interval_seconds(timeframe) == seconds


@pytest.mark.parametrize("timeframe", ["", "0m", "1x", "h1"])
def test_invalid_timeframe(timeframe):
    with pytest.raises(ValueError):
        interval_seconds(timeframe)
