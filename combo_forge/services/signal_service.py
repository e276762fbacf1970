"""
Live signal from a stored best combination.

Rebuilds the symbol's persisted entry/exit strategies with their optimized
parameters, derives the composite signals on the most recent bars and reads
them at the last bar.
"""

from __future__ import annotations

import logging
from enum import Enum

from combo_forge.backtesting.strategies import composite, strategy_for
from combo_forge.services.result_store import ResultStore
from combo_forge.services.series_source import SeriesSource

log = logging.getLogger("forge.signals")


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    NONE = "NONE"


def get_signal(symbol: str, store: ResultStore, source: SeriesSource, bars: int = 300) -> SignalType:
    """
    BUY if the stored entry mix fires on the last bar, else SELL if the exit
    mix fires, else HOLD. NONE when nothing is stored for the symbol or the
    series is empty.
    """
    combo = store.load_latest(symbol)
    if combo is None:
        log.info("%s: no stored combination", symbol)
        return SignalType.NONE

    series = source.load_series(symbol, bars)
    if series.is_empty():
        log.info("%s: empty series", symbol)
        return SignalType.NONE

    entry = composite([strategy_for(k, p).entry_signal(series) for k, p in combo.entry_params.items()])
    exit_ = composite([strategy_for(k, p).exit_signal(series) for k, p in combo.exit_params.items()])
    last = series.end_index

    if entry.is_satisfied(last):
        signal = SignalType.BUY
    elif exit_.is_satisfied(last):
        signal = SignalType.SELL
    else:
        signal = SignalType.HOLD
    log.info("%s: %s at %s", symbol, signal.value, series.frame.index[last])
    return signal
