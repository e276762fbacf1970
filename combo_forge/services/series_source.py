"""
Series sources.

Anything with load_series(symbol, max_bars) -> Series can feed the
orchestrator. Three are provided:
- CsvSeriesSource: one <SYMBOL>.csv per symbol in a directory
- YahooSeriesSource: Yahoo Finance via yfinance (free, no API key)
- InMemorySeriesSource: pre-built Series, for embedding and tests

All of them return the trailing max_bars bars, ascending by time, and
raise SeriesNotFoundError when the symbol has no history.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

import pandas as pd

from combo_forge.backtesting.series import Series
from combo_forge.errors import SeriesNotFoundError

log = logging.getLogger("forge.sources")


@runtime_checkable
class SeriesSource(Protocol):
    def load_series(self, symbol: str, max_bars: int) -> Series: ...


def _standardize(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case columns, UTC-naive ascending timestamp index, no NaN prices."""
    df = df.rename(columns=lambda c: str(c).strip().lower().replace(" ", "_"))
    df = df.rename(columns={"tradecount": "trade_count", "trades": "trade_count"})
    df.index = pd.to_datetime(df.index)
    if df.index.tz is not None:
        df.index = df.index.tz_convert("UTC").tz_localize(None)
    df.index.name = "timestamp"
    df = df.dropna(subset=[c for c in ("open", "high", "low", "close") if c in df.columns])
    return df.sort_index()


class CsvSeriesSource:
    """
    Reads <directory>/<SYMBOL>.csv.

    Expected columns: timestamp (or date), open, high, low, close, volume,
    and optionally trade_count and vwap. Header case does not matter.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()

    def path_for(self, symbol: str) -> Path:
        return self.directory / f"{symbol.upper()}.csv"

    def load_series(self, symbol: str, max_bars: int) -> Series:
        path = self.path_for(symbol)
        if not path.exists():
            raise SeriesNotFoundError(f"{symbol}: no CSV at {path}")

        df = pd.read_csv(path)
        df = df.rename(columns=str.lower)
        time_column = next((c for c in ("timestamp", "date", "datetime", "time") if c in df.columns), None)
        if time_column is None:
            raise SeriesNotFoundError(f"{symbol}: {path.name} has no timestamp/date column")
        df = _standardize(df.set_index(time_column))
        if max_bars > 0:
            df = df.tail(max_bars)

        log.debug("%s: %d bars from %s", symbol, len(df), path.name)
        return Series.from_frame(symbol, df)


class YahooSeriesSource:
    """Daily (or other interval) bars from Yahoo Finance."""

    def __init__(self, period: str = "5y", interval: str = "1d"):
        self.period = period
        self.interval = interval

    def load_series(self, symbol: str, max_bars: int) -> Series:
        import yfinance as yf

        ticker = yf.Ticker(symbol)
        df = ticker.history(period=self.period, interval=self.interval, auto_adjust=True)
        if df is None or df.empty:
            raise SeriesNotFoundError(
                f"{symbol}: no data returned (period={self.period}, interval={self.interval})"
            )
        df = _standardize(df)
        df = df[[c for c in ("open", "high", "low", "close", "volume") if c in df.columns]]
        if max_bars > 0:
            df = df.tail(max_bars)

        log.info("%s: %d bars from Yahoo (%s, %s)", symbol, len(df), self.period, self.interval)
        return Series.from_frame(symbol, df)


class InMemorySeriesSource:
    """Serves pre-built Series keyed by symbol."""

    def __init__(self, series: Mapping[str, Series]):
        self._series = dict(series)

    def load_series(self, symbol: str, max_bars: int) -> Series:
        series = self._series.get(symbol)
        if series is None:
            raise SeriesNotFoundError(f"{symbol}: not loaded")
        if max_bars > 0:
            return series.tail(max_bars)
        return series


def source_from_settings(settings) -> SeriesSource:
    """Build the source named by settings.data_source."""
    if settings.data_source == "yahoo":
        return YahooSeriesSource(settings.yahoo_period, settings.yahoo_interval)
    return CsvSeriesSource(settings.data_dir)
