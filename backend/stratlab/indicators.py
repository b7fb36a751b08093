"""
Technical Indicators
Optimized with NumPy, hot loops compiled with Numba.
Every series has one value per bar; NaN marks the warm-up window.
"""
import logging
from typing import Callable, Dict, Iterable, Sequence

import numpy as np
import pandas as pd
from numba import jit

from stratlab.errors import BarSeriesError, ConfigurationError
from stratlab.models import (
    ATRSpec, Bar, BollingerSpec, EMASpec, IndicatorKind, IndicatorSpec, MACDSpec,
    MASpec, OBVSpec, PriceField, PriceSpec, RSISpec, StochasticSpec, VolumeSpec,
)

logger = logging.getLogger(__name__)


class BarSeries:
    """Column arrays of an ascending OHLCV bar series"""

    def __init__(self, date, open_, high, low, close, adj_close, volume):
        self.date = np.asarray(date, dtype=object)
        self.open = np.asarray(open_, dtype=np.float64)
        self.high = np.asarray(high, dtype=np.float64)
        self.low = np.asarray(low, dtype=np.float64)
        self.close = np.asarray(close, dtype=np.float64)
        self.adj_close = np.asarray(adj_close, dtype=np.float64)
        self.volume = np.asarray(volume, dtype=np.float64)
        self.length = len(self.close)

        columns = (self.date, self.open, self.high, self.low, self.close, self.adj_close, self.volume)
        if any(len(col) != self.length for col in columns):
            raise BarSeriesError("All bar columns must have the same length")
        self._check_finite()
        self._check_order()

    def _check_finite(self):
        # Every bar is a complete OHLCV observation
        for name, col in (('open', self.open), ('high', self.high), ('low', self.low), ('close', self.close),
                          ('adjclose', self.adj_close), ('volume', self.volume)):
            bad = np.flatnonzero(~np.isfinite(col))
            if len(bad):
                raise BarSeriesError(
                    f"Missing or non-finite {name} on {len(bad)} bar(s), first at {self.date[bad[0]]}"
                )

    def _check_order(self):
        if self.length < 2:
            return
        try:
            parsed = pd.to_datetime(pd.Series(self.date))
        except (ValueError, TypeError) as e:
            raise BarSeriesError(f"Unparseable bar date: {e}") from e
        if not parsed.is_unique:
            raise BarSeriesError("Bar dates must not repeat")
        if not parsed.is_monotonic_increasing:
            raise BarSeriesError("Bars must be ordered by ascending date")

    @classmethod
    def from_bars(cls, bars: Sequence[Bar]) -> 'BarSeries':
        return cls(
            date=[b.date for b in bars],
            open_=[b.open for b in bars],
            high=[b.high for b in bars],
            low=[b.low for b in bars],
            close=[b.close for b in bars],
            adj_close=[b.adjClose for b in bars],
            volume=[b.volume for b in bars],
        )

    def field(self, price_type: PriceField) -> np.ndarray:
        """Price column selected by a PRICE/MA/EMA priceType"""
        return {
            PriceField.OPEN: self.open,
            PriceField.HIGH: self.high,
            PriceField.LOW: self.low,
            PriceField.CLOSE: self.close,
            PriceField.ADJ_CLOSE: self.adj_close,
        }[PriceField(price_type)]

    def __len__(self) -> int:
        return self.length


class IndicatorBank:
    """Memoized indicator series for one bar series.

    An indicator referenced by several conditions (or by both sides of a
    comparison) is calculated once. Specs are frozen models, so they key the
    cache directly.
    """

    def __init__(self, series: BarSeries):
        self.series = series
        self.length = series.length
        self.indicators: Dict[IndicatorSpec, np.ndarray] = {}

    def build(self, specs: Iterable[IndicatorSpec]) -> 'IndicatorBank':
        """Pre-compute every indicator in `specs` (e.g. `strategy.indicator_specs()`)"""
        for spec in specs:
            self.get(spec)
        logger.debug("Indicator bank holds %d series over %d bars", len(self.indicators), self.length)
        return self

    def get(self, spec: IndicatorSpec) -> np.ndarray:
        values = self.indicators.get(spec)
        if values is None:
            values = compute_indicator(self.series, spec)
            self.indicators[spec] = values
        return values


# ==================== INDICATOR FUNCTIONS ====================

@jit(nopython=True)
def _sma_core(values: np.ndarray, period: int) -> np.ndarray:
    """SMA Core (Numba optimized)"""
    n = len(values)
    result = np.full(n, np.nan)

    for i in range(period - 1, n):
        result[i] = np.mean(values[i - period + 1:i + 1])

    return result


def calculate_sma(values: np.ndarray, period: int) -> np.ndarray:
    """Simple Moving Average (NaN inside a window propagates)"""
    if len(values) < period:
        return np.full(len(values), np.nan)
    return _sma_core(values.astype(np.float64), period)


@jit(nopython=True)
def _ema_core(values: np.ndarray, period: int, start: int) -> np.ndarray:
    """EMA Core (Numba optimized); seeded with the SMA of values[start:start + period]"""
    n = len(values)
    ema = np.full(n, np.nan)
    seed = start + period - 1
    if seed >= n:
        return ema

    ema[seed] = np.mean(values[start:seed + 1])
    alpha = 2.0 / (period + 1)
    for i in range(seed + 1, n):
        ema[i] = alpha * values[i] + (1.0 - alpha) * ema[i - 1]

    return ema


def calculate_ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential Moving Average.

    Seeding starts at the first defined value, so a series with a warm-up
    prefix (the MACD line) can be smoothed directly.
    """
    defined = np.flatnonzero(~np.isnan(values))
    if len(defined) == 0:
        return np.full(len(values), np.nan)
    return _ema_core(values.astype(np.float64), period, int(defined[0]))


@jit(nopython=True)
def _rsi_core(values: np.ndarray, period: int) -> np.ndarray:
    """RSI Core (Numba optimized)"""
    n = len(values)
    rsi = np.full(n, np.nan)

    # Calculate price changes
    deltas = np.diff(values)

    # Separate gains and losses
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    # Initial averages
    avg_gain = np.mean(gains[:period])
    avg_loss = np.mean(losses[:period])

    if avg_loss == 0:
        rsi[period] = 100.0
    else:
        rs = avg_gain / avg_loss
        rsi[period] = 100.0 - (100.0 / (1.0 + rs))

    # Wilder smoothing
    for i in range(period + 1, n):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period

        if avg_loss == 0:
            rsi[i] = 100.0
        else:
            rs = avg_gain / avg_loss
            rsi[i] = 100.0 - (100.0 / (1.0 + rs))

    return rsi


def calculate_rsi(values: np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index (Wilder); 100 when the average loss is zero"""
    if len(values) < period + 1:
        return np.full(len(values), np.nan)
    return _rsi_core(values.astype(np.float64), period)


def calculate_macd(values: np.ndarray, fast: int = 12, slow: int = 26, signal: int = 9):
    """MACD line, signal line (EMA of the MACD line) and histogram"""
    macd = calculate_ema(values, fast) - calculate_ema(values, slow)
    signal_line = calculate_ema(macd, signal)
    histogram = macd - signal_line
    return macd, signal_line, histogram


def calculate_bollinger_bands(values: np.ndarray, period: int = 20, std_dev: float = 2.0):
    """Bollinger Bands (population standard deviation)"""
    middle = calculate_sma(values, period)

    std = np.full(len(values), np.nan)
    if len(values) >= period:
        for i in range(period - 1, len(values)):
            std[i] = np.std(values[i - period + 1:i + 1])

    upper = middle + (std * std_dev)
    lower = middle - (std * std_dev)

    return upper, middle, lower


def calculate_stochastic(high: np.ndarray, low: np.ndarray, close: np.ndarray,
                         k_period: int = 14, d_period: int = 3, slowing: int = 3):
    """Stochastic Oscillator: smoothed %K and %D"""
    n = len(close)
    raw_k = np.full(n, np.nan)

    if n >= k_period:
        for i in range(k_period - 1, n):
            highest_high = np.max(high[i - k_period + 1:i + 1])
            lowest_low = np.min(low[i - k_period + 1:i + 1])

            if highest_high - lowest_low == 0:
                raw_k[i] = 0.0
            else:
                raw_k[i] = 100.0 * (close[i] - lowest_low) / (highest_high - lowest_low)

    k = calculate_sma(raw_k, slowing)
    d = calculate_sma(k, d_period)

    return k, d


@jit(nopython=True)
def _obv_core(close: np.ndarray, volume: np.ndarray) -> np.ndarray:
    """OBV Core (Numba optimized); first bar is 0"""
    n = len(close)
    obv = np.zeros(n)

    for i in range(1, n):
        if close[i] > close[i - 1]:
            obv[i] = obv[i - 1] + volume[i]
        elif close[i] < close[i - 1]:
            obv[i] = obv[i - 1] - volume[i]
        else:
            obv[i] = obv[i - 1]

    return obv


def calculate_obv(close: np.ndarray, volume: np.ndarray) -> np.ndarray:
    """On-Balance Volume"""
    return _obv_core(close.astype(np.float64), volume.astype(np.float64))


@jit(nopython=True)
def _atr_core(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int) -> np.ndarray:
    """ATR Core (Numba optimized)"""
    n = len(close)
    tr = np.full(n, np.nan)
    atr = np.full(n, np.nan)

    # True Range
    for i in range(1, n):
        hl = high[i] - low[i]
        hc = abs(high[i] - close[i - 1])
        lc = abs(low[i] - close[i - 1])
        tr[i] = max(hl, hc, lc)

    # First ATR = average TR
    atr[period] = np.mean(tr[1:period + 1])

    # Smooth ATR
    for i in range(period + 1, n):
        atr[i] = (atr[i - 1] * (period - 1) + tr[i]) / period

    return atr


def calculate_atr(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int = 14) -> np.ndarray:
    """Average True Range"""
    if len(close) < period + 1:
        return np.full(len(close), np.nan)
    return _atr_core(high.astype(np.float64), low.astype(np.float64), close.astype(np.float64), period)


# ==================== DISPATCH ====================

def _price(series: BarSeries, spec: PriceSpec) -> np.ndarray:
    return series.field(spec.priceType)


def _volume(series: BarSeries, spec: VolumeSpec) -> np.ndarray:
    return series.volume


def _ma(series: BarSeries, spec: MASpec) -> np.ndarray:
    return calculate_sma(series.field(spec.priceType), spec.period)


def _ema(series: BarSeries, spec: EMASpec) -> np.ndarray:
    return calculate_ema(series.field(spec.priceType), spec.period)


def _rsi(series: BarSeries, spec: RSISpec) -> np.ndarray:
    return calculate_rsi(series.close, spec.period)


def _macd(series: BarSeries, spec: MACDSpec) -> np.ndarray:
    macd, signal, histogram = calculate_macd(series.close, spec.fastPeriod, spec.slowPeriod, spec.signalPeriod)
    return {'macd': macd, 'signal': signal, 'histogram': histogram}[spec.macdPart]


def _bollinger(series: BarSeries, spec: BollingerSpec) -> np.ndarray:
    upper, middle, lower = calculate_bollinger_bands(series.close, spec.period, spec.stdDev)
    return {'upper': upper, 'middle': middle, 'lower': lower}[spec.bandPart]


def _stochastic(series: BarSeries, spec: StochasticSpec) -> np.ndarray:
    k, d = calculate_stochastic(series.high, series.low, series.close, spec.kPeriod, spec.dPeriod, spec.slowing)
    return k if spec.stochPart == 'k' else d


def _obv(series: BarSeries, spec: OBVSpec) -> np.ndarray:
    return calculate_obv(series.close, series.volume)


def _atr(series: BarSeries, spec: ATRSpec) -> np.ndarray:
    return calculate_atr(series.high, series.low, series.close, spec.period)


INDICATOR_CALCULATORS: Dict[IndicatorKind, Callable[[BarSeries, IndicatorSpec], np.ndarray]] = {
    IndicatorKind.PRICE: _price,
    IndicatorKind.VOLUME: _volume,
    IndicatorKind.MA: _ma,
    IndicatorKind.EMA: _ema,
    IndicatorKind.RSI: _rsi,
    IndicatorKind.MACD: _macd,
    IndicatorKind.BOLLINGER: _bollinger,
    IndicatorKind.STOCHASTIC: _stochastic,
    IndicatorKind.OBV: _obv,
    IndicatorKind.ATR: _atr,
}


def compute_indicator(series: BarSeries, spec: IndicatorSpec) -> np.ndarray:
    """Calculate one indicator series over the whole bar history"""
    calculator = INDICATOR_CALCULATORS.get(spec.kind)
    if calculator is None:
        raise ConfigurationError(f"Unknown indicator kind: {spec.kind}")
    return calculator(series, spec)
