from datetime import date, timedelta

import pytest

from stratlab.indicators import BarSeries, IndicatorBank
from stratlab.models import Bar


def _bars(closes, highs=None, lows=None, volumes=None, start=date(2024, 1, 1)):
    highs = highs if highs is not None else [c + 1.0 for c in closes]
    lows = lows if lows is not None else [c - 1.0 for c in closes]
    volumes = volumes if volumes is not None else [1000.0] * len(closes)
    return [
        Bar(
            date=(start + timedelta(days=i)).isoformat(),
            open=float(c),
            high=float(h),
            low=float(l),
            close=float(c),
            adjClose=float(c),
            volume=float(v),
        )
        for i, (c, h, l, v) in enumerate(zip(closes, highs, lows, volumes))
    ]


@pytest.fixture
def make_bars():
    return _bars


@pytest.fixture
def make_series():
    def factory(closes, **kwargs):
        return BarSeries.from_bars(_bars(closes, **kwargs))
    return factory


@pytest.fixture
def make_bank(make_series):
    def factory(closes, **kwargs):
        return IndicatorBank(make_series(closes, **kwargs))
    return factory


@pytest.fixture
def dip_then_spike_closes():
    """Sideways for 15 bars, 10 falling bars, then 15 rising bars"""
    closes = [100.0]
    for i in range(14):
        closes.append(closes[-1] + (1.0 if i % 2 == 0 else -1.0))
    for _ in range(10):
        closes.append(closes[-1] - 2.0)
    for _ in range(15):
        closes.append(closes[-1] + 3.0)
    return closes
