"""
Immutable OHLCV series.

A Series is built once per optimization run from a bounded lookback and
never mutated afterwards. Sub-ranges share the parent's data: slicing a
fold out of a 1,000-bar history does not copy it.

All indices are positional (0 .. bar_count - 1) and relative to the
series they are taken on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Sequence

import numpy as np
import pandas as pd

from combo_forge.errors import InvalidSeriesError, OutOfRangeError

PRICE_COLUMNS = ("open", "high", "low", "close")
COLUMNS = ("open", "high", "low", "close", "volume", "trade_count", "vwap")


@dataclass(frozen=True)
class Bar:
    """One OHLCV sample."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    trade_count: int = 0
    vwap: float = 0.0


class Series:
    """Ordered bars for one symbol, strictly increasing timestamps."""

    def __init__(self, symbol: str, bars: Sequence[Bar]):
        rows = [
            (b.open, b.high, b.low, b.close, b.volume, b.trade_count, b.vwap)
            for b in bars
        ]
        index = pd.DatetimeIndex([pd.Timestamp(b.timestamp) for b in bars], name="timestamp")
        frame = pd.DataFrame(rows, index=index, columns=list(COLUMNS))
        _validate(symbol, frame)
        self._init(symbol, frame)

    @classmethod
    def from_frame(cls, symbol: str, df: pd.DataFrame) -> Series:
        """
        Build a Series from a DataFrame indexed by timestamp.

        Required columns: open, high, low, close. volume, trade_count and
        vwap default to 0 when absent. Column names are case-insensitive.
        """
        frame = df.rename(columns=str.lower)
        missing = [c for c in PRICE_COLUMNS if c not in frame.columns]
        if missing:
            raise InvalidSeriesError(f"{symbol}: missing columns {missing}")
        frame = frame.copy()
        for column in ("volume", "trade_count", "vwap"):
            if column not in frame.columns:
                frame[column] = 0
        frame[["volume", "trade_count", "vwap"]] = frame[["volume", "trade_count", "vwap"]].fillna(0)
        frame = frame[list(COLUMNS)].astype(
            {"open": float, "high": float, "low": float, "close": float,
             "volume": float, "trade_count": int, "vwap": float}
        )
        frame.index = pd.DatetimeIndex(frame.index, name="timestamp")
        _validate(symbol, frame)
        series = cls.__new__(cls)
        series._init(symbol, frame)
        return series

    def _init(self, symbol: str, frame: pd.DataFrame) -> None:
        self.symbol = symbol
        self._frame = frame
        self._arrays: dict[str, np.ndarray] = {}
        for column in ("open", "high", "low", "close", "volume"):
            values = frame[column].to_numpy(dtype=np.float64, copy=True)
            values.flags.writeable = False
            self._arrays[column] = values

    # ── Shape ──

    @property
    def bar_count(self) -> int:
        return len(self._frame)

    @property
    def begin_index(self) -> int:
        return 0

    @property
    def end_index(self) -> int:
        return self.bar_count - 1

    def __len__(self) -> int:
        return self.bar_count

    def is_empty(self) -> bool:
        return self.bar_count == 0

    # ── Access ──

    @property
    def frame(self) -> pd.DataFrame:
        """Underlying DataFrame. Treat as read-only."""
        return self._frame

    @property
    def open(self) -> np.ndarray:
        return self._arrays["open"]

    @property
    def high(self) -> np.ndarray:
        return self._arrays["high"]

    @property
    def low(self) -> np.ndarray:
        return self._arrays["low"]

    @property
    def close(self) -> np.ndarray:
        return self._arrays["close"]

    @property
    def volume(self) -> np.ndarray:
        return self._arrays["volume"]

    def bar(self, index: int) -> Bar:
        if not 0 <= index < self.bar_count:
            raise OutOfRangeError(f"{self.symbol}: bar {index} outside [0, {self.bar_count})")
        row = self._frame.iloc[index]
        return Bar(
            timestamp=self._frame.index[index].to_pydatetime(),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]),
            trade_count=int(row["trade_count"]),
            vwap=float(row["vwap"]),
        )

    def __iter__(self) -> Iterator[Bar]:
        for i in range(self.bar_count):
            yield self.bar(i)

    def subrange(self, start: int, end: int) -> Series:
        """Bars [start, end) as a new Series. Requires 0 <= start <= end <= bar_count."""
        if not 0 <= start <= end <= self.bar_count:
            raise OutOfRangeError(
                f"{self.symbol}: subrange [{start}, {end}) outside [0, {self.bar_count}]"
            )
        child = Series.__new__(Series)
        child.symbol = self.symbol
        child._frame = self._frame.iloc[start:end]
        child._arrays = {name: values[start:end] for name, values in self._arrays.items()}
        return child

    def tail(self, count: int) -> Series:
        """The trailing `count` bars (all of them when count >= bar_count)."""
        count = max(0, min(count, self.bar_count))
        return self.subrange(self.bar_count - count, self.bar_count)

    def __repr__(self) -> str:
        if self.is_empty():
            return f"Series({self.symbol!r}, empty)"
        return (
            f"Series({self.symbol!r}, {self.bar_count} bars, "
            f"{self._frame.index[0]} .. {self._frame.index[-1]})"
        )


def _validate(symbol: str, frame: pd.DataFrame) -> None:
    if frame.empty:
        return
    index = frame.index
    if index.has_duplicates:
        raise InvalidSeriesError(f"{symbol}: duplicate timestamps")
    if not index.is_monotonic_increasing:
        raise InvalidSeriesError(f"{symbol}: timestamps are not in ascending order")
    prices = frame[list(PRICE_COLUMNS)].to_numpy(dtype=np.float64)
    if not np.isfinite(prices).all():
        raise InvalidSeriesError(f"{symbol}: non-finite prices")
