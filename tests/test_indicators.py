import numpy as np
import pytest

from stratlab.errors import BarSeriesError
from stratlab.indicators import (
    BarSeries, IndicatorBank, calculate_ema, calculate_obv, compute_indicator,
)
from stratlab.models import (
    ATRSpec, BollingerSpec, EMASpec, MACDSpec, MASpec, OBVSpec, PriceField, PriceSpec,
    RSISpec, StochasticSpec, VolumeSpec,
)

ALL_SPECS = [
    PriceSpec(), PriceSpec(priceType=PriceField.HIGH), VolumeSpec(),
    MASpec(period=10), EMASpec(period=10), RSISpec(period=14),
    MACDSpec(), MACDSpec(macdPart='signal'), MACDSpec(macdPart='histogram'),
    BollingerSpec(), BollingerSpec(bandPart='lower'),
    StochasticSpec(), StochasticSpec(stochPart='d'),
    OBVSpec(), ATRSpec(),
]


@pytest.fixture
def random_walk():
    rng = np.random.default_rng(7)
    return list(100 + np.cumsum(rng.normal(0, 1, 200)))


def test_ma_over_flat_window(make_series):
    series = make_series([100.0] * 5)
    values = compute_indicator(series, MASpec(period=5))
    assert np.isnan(values[:4]).all()
    assert values[4] == 100.0


def test_ma_uses_selected_price_field(make_series):
    series = make_series([10.0, 20.0, 30.0])
    values = compute_indicator(series, MASpec(period=3, priceType=PriceField.HIGH))
    assert values[2] == pytest.approx(21.0)


def test_ema_seed_and_recursion():
    values = calculate_ema(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 3)
    assert np.isnan(values[:2]).all()
    assert values[2] == pytest.approx(2.0)
    assert values[3] == pytest.approx(3.0)
    assert values[4] == pytest.approx(4.0)


def test_ema_seeds_after_undefined_prefix():
    values = calculate_ema(np.array([np.nan, np.nan, 2.0, 4.0, 6.0]), 2)
    assert np.isnan(values[:3]).all()
    assert values[3] == pytest.approx(3.0)


def test_ema_converges_to_step_level(make_series):
    series = make_series([10.0] * 20 + [20.0] * 200)
    values = compute_indicator(series, EMASpec(period=10))
    assert values[19] == pytest.approx(10.0)
    tail = values[20:]
    assert np.all(np.diff(tail) >= -1e-12)
    assert values[-1] == pytest.approx(20.0, abs=1e-9)


def test_rsi_all_gains_is_100(make_series):
    series = make_series([float(100 + i) for i in range(30)])
    values = compute_indicator(series, RSISpec(period=14))
    assert np.isnan(values[:14]).all()
    assert values[-1] == 100.0


def test_rsi_bounded(make_series, random_walk):
    values = compute_indicator(make_series(random_walk), RSISpec(period=14))
    defined = values[~np.isnan(values)]
    assert len(defined) == 200 - 14
    assert ((defined >= 0) & (defined <= 100)).all()


def test_rsi_all_losses_is_0(make_series):
    values = compute_indicator(make_series([float(100 - i) for i in range(20)]), RSISpec(period=5))
    assert values[-1] == 0.0


def test_macd_components(make_series, random_walk):
    series = make_series(random_walk)
    macd = compute_indicator(series, MACDSpec())
    signal = compute_indicator(series, MACDSpec(macdPart='signal'))
    histogram = compute_indicator(series, MACDSpec(macdPart='histogram'))

    assert np.isnan(macd[:25]).all() and not np.isnan(macd[25:]).any()
    assert np.isnan(signal[:33]).all() and not np.isnan(signal[33:]).any()
    np.testing.assert_allclose(histogram[33:], macd[33:] - signal[33:])


def test_macd_of_flat_series_is_zero(make_series):
    values = compute_indicator(make_series([50.0] * 40), MACDSpec(fastPeriod=3, slowPeriod=6, signalPeriod=3))
    assert values[-1] == pytest.approx(0.0)


def test_bollinger_known_values(make_series):
    series = make_series([1.0, 2.0, 3.0])
    upper = compute_indicator(series, BollingerSpec(period=3, stdDev=1.0, bandPart='upper'))
    middle = compute_indicator(series, BollingerSpec(period=3, stdDev=1.0, bandPart='middle'))
    assert middle[2] == pytest.approx(2.0)
    assert upper[2] == pytest.approx(2.0 + np.sqrt(2.0 / 3.0))


@pytest.mark.parametrize('multiplier', [0.0, 0.5, 2.0, 3.5])
def test_bollinger_band_ordering(make_series, random_walk, multiplier):
    series = make_series(random_walk)
    bands = [
        compute_indicator(series, BollingerSpec(period=20, stdDev=multiplier, bandPart=part))
        for part in ('upper', 'middle', 'lower')
    ]
    upper, middle, lower = (b[19:] for b in bands)
    assert (upper >= middle).all()
    assert (middle >= lower).all()


def test_stochastic_flat_range_is_zero(make_series):
    flat = [5.0] * 12
    series = make_series(flat, highs=flat, lows=flat)
    k = compute_indicator(series, StochasticSpec(kPeriod=5, dPeriod=3, slowing=3))
    d = compute_indicator(series, StochasticSpec(kPeriod=5, dPeriod=3, slowing=3, stochPart='d'))
    assert np.isnan(k[:6]).all() and (k[6:] == 0.0).all()
    assert np.isnan(d[:8]).all() and (d[8:] == 0.0).all()


def test_stochastic_close_at_high(make_series):
    closes = [float(10 + i) for i in range(10)]
    series = make_series(closes, highs=closes, lows=[c - 2.0 for c in closes])
    k = compute_indicator(series, StochasticSpec(kPeriod=3, dPeriod=2, slowing=1))
    assert k[-1] == pytest.approx(100.0)


def test_obv_starts_at_zero():
    values = calculate_obv(np.array([10.0, 11.0, 11.0, 9.0]), np.array([100.0, 200.0, 300.0, 400.0]))
    np.testing.assert_array_equal(values, [0.0, 200.0, 200.0, -200.0])


def test_atr_constant_range(make_series):
    series = make_series([50.0] * 20)
    values = compute_indicator(series, ATRSpec(period=5))
    assert np.isnan(values[:5]).all()
    np.testing.assert_allclose(values[5:], 2.0)


@pytest.mark.parametrize('spec', ALL_SPECS, ids=lambda s: f"{s.type}-{s.warmup}")
def test_warmup_matches_undefined_prefix(make_series, random_walk, spec):
    values = compute_indicator(make_series(random_walk), spec)
    assert len(values) == 200
    assert np.isnan(values[:spec.warmup]).all()
    assert not np.isnan(values[spec.warmup:]).any()


@pytest.mark.parametrize('spec', [s for s in ALL_SPECS if s.warmup > 0], ids=lambda s: s.type)
def test_short_series_is_undefined_everywhere(make_series, spec):
    series = make_series([float(100 + i % 3) for i in range(spec.warmup)])
    values = compute_indicator(series, spec)
    assert len(values) == spec.warmup
    assert np.isnan(values).all()


def test_empty_series(make_series):
    series = make_series([])
    for spec in ALL_SPECS:
        assert len(compute_indicator(series, spec)) == 0


def test_bank_memoizes_equal_specs(make_series, random_walk):
    bank = IndicatorBank(make_series(random_walk))
    first = bank.get(MASpec(period=10))
    assert bank.get(MASpec(period=10)) is first
    assert bank.get(MASpec(period=11)) is not first
    assert len(bank.indicators) == 2


def test_bar_series_rejects_unordered_dates(make_bars):
    bars = make_bars([1.0, 2.0, 3.0])
    with pytest.raises(BarSeriesError):
        BarSeries.from_bars([bars[1], bars[0], bars[2]])


def test_bar_series_rejects_duplicate_dates(make_bars):
    bars = make_bars([1.0, 2.0])
    with pytest.raises(BarSeriesError):
        BarSeries.from_bars([bars[0], bars[0]])


@pytest.mark.parametrize('column', ['open_', 'high', 'low', 'close', 'adj_close', 'volume'])
def test_bar_series_rejects_non_finite_values(column):
    columns = {name: [1.0, 2.0, 3.0] for name in ('open_', 'high', 'low', 'close', 'adj_close', 'volume')}
    columns[column] = [1.0, np.nan if column != 'volume' else np.inf, 3.0]
    with pytest.raises(BarSeriesError, match='2024-01-02'):
        BarSeries(date=['2024-01-01', '2024-01-02', '2024-01-03'], **columns)


def test_bar_series_rejects_short_close_column():
    with pytest.raises(BarSeriesError, match='same length'):
        BarSeries(date=['2024-01-01', '2024-01-02'], open_=[1.0, 2.0], high=[1.0, 2.0], low=[1.0, 2.0],
                  close=[1.0], adj_close=[1.0, 2.0], volume=[1.0, 2.0])
