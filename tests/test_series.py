"""Tests for the immutable OHLCV Series."""

from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import pytest

from combo_forge.backtesting.series import Bar, Series
from combo_forge.errors import InvalidSeriesError, OutOfRangeError


def _bar(day: int, close: float = 10.0) -> Bar:
    return Bar(
        timestamp=datetime(2024, 1, 1) + timedelta(days=day),
        open=close, high=close + 1, low=close - 1, close=close, volume=100.0,
    )


class TestConstruction:

    def test_valid_bars(self):
        series = Series("ABC", [_bar(0, 10), _bar(1, 11), _bar(2, 12)])
        assert series.bar_count == 3
        assert series.begin_index == 0
        assert series.end_index == 2
        assert series.close.tolist() == [10.0, 11.0, 12.0]

    def test_duplicate_timestamps_rejected(self):
        with pytest.raises(InvalidSeriesError):
            Series("ABC", [_bar(0), _bar(1), _bar(1)])

    def test_unordered_timestamps_rejected(self):
        with pytest.raises(InvalidSeriesError):
            Series("ABC", [_bar(0), _bar(2), _bar(1)])

    def test_non_finite_price_rejected(self):
        with pytest.raises(InvalidSeriesError):
            Series("ABC", [_bar(0), _bar(1, float("nan"))])

    def test_empty_series(self):
        series = Series("ABC", [])
        assert series.is_empty()
        assert series.bar_count == 0
        assert series.end_index == -1

    def test_from_frame_defaults_optional_columns(self):
        index = pd.date_range("2024-01-01", periods=3, freq="D")
        df = pd.DataFrame(
            {"Open": [1.0, 2.0, 3.0], "High": [1.5, 2.5, 3.5], "Low": [0.5, 1.5, 2.5], "Close": [1.2, 2.2, 3.2]},
            index=index,
        )
        series = Series.from_frame("XYZ", df)
        bar = series.bar(1)
        assert bar.close == 2.2
        assert bar.volume == 0.0
        assert bar.trade_count == 0

    def test_from_frame_missing_close(self):
        df = pd.DataFrame({"open": [1.0], "high": [1.0], "low": [1.0]},
                          index=pd.date_range("2024-01-01", periods=1))
        with pytest.raises(InvalidSeriesError):
            Series.from_frame("XYZ", df)

    def test_price_arrays_are_read_only(self):
        series = Series("ABC", [_bar(0), _bar(1)])
        with pytest.raises(ValueError):
            series.close[0] = 99.0


class TestSubrange:

    @pytest.fixture
    def series(self):
        return Series("ABC", [_bar(i, 10 + i) for i in range(10)])

    def test_half_open_bounds(self, series):
        sub = series.subrange(2, 5)
        assert sub.bar_count == 3
        assert sub.close.tolist() == [12.0, 13.0, 14.0]
        assert sub.bar(0).timestamp == series.bar(2).timestamp

    def test_full_and_empty_ranges(self, series):
        assert series.subrange(0, 10).bar_count == 10
        assert series.subrange(4, 4).is_empty()

    @pytest.mark.parametrize("start,end", [(-1, 3), (3, 2), (0, 11)])
    def test_out_of_range(self, series, start, end):
        with pytest.raises(OutOfRangeError):
            series.subrange(start, end)

    def test_bar_out_of_range(self, series):
        with pytest.raises(OutOfRangeError):
            series.bar(10)

    def test_parent_unchanged(self, series):
        series.subrange(3, 6)
        assert series.bar_count == 10
        assert np.array_equal(series.close, np.arange(10, 20, dtype=float))

    def test_tail(self, series):
        assert series.tail(3).close.tolist() == [17.0, 18.0, 19.0]
        assert series.tail(50).bar_count == 10
        assert series.tail(0).is_empty()
