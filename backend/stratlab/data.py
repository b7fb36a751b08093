"""
Market Data Loading
Parses daily OHLCV bars (CSV / DataFrame) into a BarSeries
"""
import logging
from io import StringIO
from typing import List

import numpy as np
import pandas as pd

from stratlab.errors import BarSeriesError, MarketDataError
from stratlab.indicators import BarSeries
from stratlab.models import Bar

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['date', 'open', 'high', 'low', 'close', 'volume']

_COLUMN_ALIASES = {
    'datetime': 'date',
    'time': 'date',
    'adj close': 'adjclose',
    'adj_close': 'adjclose',
}


def _numeric(df: pd.DataFrame, column: str) -> np.ndarray:
    try:
        return pd.to_numeric(df[column], errors='raise').values.astype(float)
    except (ValueError, TypeError) as e:
        raise BarSeriesError(f"Non-numeric value in column {column!r}: {e}") from e


def series_from_dataframe(df: pd.DataFrame) -> BarSeries:
    """Normalize column names, sort by date and build a BarSeries"""
    df = df.copy()
    df.columns = df.columns.str.lower().str.strip()
    df.rename(columns=_COLUMN_ALIASES, inplace=True)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise BarSeriesError(f"Bars must contain: {REQUIRED_COLUMNS} (missing: {missing}, found: {list(df.columns)})")
    if 'adjclose' not in df.columns:
        df['adjclose'] = df['close']

    try:
        dates = pd.to_datetime(df['date'])
    except (ValueError, TypeError) as e:
        raise BarSeriesError(f"Unparseable date column: {e}") from e
    df['date'] = dates
    df.sort_values('date', inplace=True, kind='stable')

    # Daily bars keep a plain date; intraday bars keep the time of day
    daily = bool((df['date'].dt.normalize() == df['date']).all())
    fmt = '%Y-%m-%d' if daily else '%Y-%m-%dT%H:%M:%S'

    return BarSeries(
        date=df['date'].dt.strftime(fmt).values,
        open_=_numeric(df, 'open'),
        high=_numeric(df, 'high'),
        low=_numeric(df, 'low'),
        close=_numeric(df, 'close'),
        adj_close=_numeric(df, 'adjclose'),
        volume=_numeric(df, 'volume'),
    )


def series_from_csv_text(text: str) -> BarSeries:
    try:
        df = pd.read_csv(StringIO(text))
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise MarketDataError(f"Could not parse bar CSV: {e}") from e
    return series_from_dataframe(df)


def load_series_csv(path: str) -> BarSeries:
    try:
        df = pd.read_csv(path)
    except OSError as e:
        raise MarketDataError(f"Could not read {path}: {e}") from e
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise MarketDataError(f"Could not parse {path}: {e}") from e
    series = series_from_dataframe(df)
    logger.info("Loaded %d bars from %s", series.length, path)
    return series


def series_to_bars(series: BarSeries) -> List[Bar]:
    return [
        Bar(
            date=str(series.date[i]),
            open=float(series.open[i]),
            high=float(series.high[i]),
            low=float(series.low[i]),
            close=float(series.close[i]),
            adjClose=float(series.adj_close[i]),
            volume=float(series.volume[i]),
        )
        for i in range(series.length)
    ]


def nan_to_none(values: np.ndarray) -> list:
    """JSON-friendly list: undefined (warm-up) values become None"""
    return [None if np.isnan(v) else float(v) for v in values]
