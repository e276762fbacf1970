"""Tests for live signals from stored combinations."""

import pytest

from combo_forge.backtesting.series import Series
from combo_forge.backtesting.strategies import ImprovedTrendParams, StrategyKind
from combo_forge.services.series_source import InMemorySeriesSource
from combo_forge.services.signal_service import SignalType, get_signal

TREND = {StrategyKind.IMPROVED_TREND: ImprovedTrendParams(use_rsi_filter=False)}


@pytest.fixture
def stored(store, combo_factory):
    for symbol in ("UP", "DOWN", "FLAT", "EMPTY"):
        store.upsert(symbol, combo_factory(symbol, entry_params=TREND, exit_params=TREND))
    return store


@pytest.fixture
def source(uptrend, downtrend, flat):
    return InMemorySeriesSource({"UP": uptrend, "DOWN": downtrend, "FLAT": flat, "EMPTY": Series("EMPTY", [])})


@pytest.mark.parametrize("symbol,expected", [
    ("UP", SignalType.BUY),
    ("DOWN", SignalType.SELL),
    ("FLAT", SignalType.HOLD),
    ("EMPTY", SignalType.NONE),
])
def test_signal_at_last_bar(stored, source, symbol, expected):
    assert get_signal(symbol, stored, source, bars=100) == expected


def test_nothing_stored(store, source):
    assert get_signal("UP", store, source) == SignalType.NONE
