"""
Technical indicators on pandas.

Every function takes and returns pandas Series aligned on the input index.
Moving averages use partial windows during warm-up (the first bars average
whatever history exists) so strategies can emit signals on short folds
instead of sitting on NaN for the first `period` bars.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


def sma(values: pd.Series, period: int) -> pd.Series:
    return values.rolling(period, min_periods=1).mean()


def ema(values: pd.Series, period: int) -> pd.Series:
    return values.ewm(span=period, adjust=False).mean()


def rsi(close: pd.Series, period: int) -> pd.Series:
    """
    Wilder RSI (smoothed with alpha = 1 / period).

    100 when the window has gains and no losses, 0 when it has neither.
    """
    delta = close.diff().fillna(0.0)
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)
    avg_gain = gain.ewm(alpha=1.0 / period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, adjust=False).mean()

    rs = avg_gain / avg_loss.replace(0.0, np.nan)
    out = 100.0 - 100.0 / (1.0 + rs)
    out = out.where(avg_loss > 0, np.where(avg_gain > 0, 100.0, 0.0))
    return out


def macd(close: pd.Series, short_period: int, long_period: int) -> pd.Series:
    return ema(close, short_period) - ema(close, long_period)


def highest_high(high: pd.Series, lookback: int) -> pd.Series:
    """Highest high of the `lookback` bars *before* each bar (NaN on bar 0)."""
    return high.shift(1).rolling(lookback, min_periods=1).max()


def lowest_low(low: pd.Series, lookback: int) -> pd.Series:
    """Lowest low of the `lookback` bars *before* each bar (NaN on bar 0)."""
    return low.shift(1).rolling(lookback, min_periods=1).min()


def crossed_up(a: pd.Series, b: pd.Series) -> pd.Series:
    """True where `a` moves from at-or-below `b` to strictly above it."""
    above = a > b
    was_at_or_below = (a.shift(1) <= b.shift(1)).fillna(False).astype(bool)
    return above & was_at_or_below


def crossed_down(a: pd.Series, b: pd.Series) -> pd.Series:
    """True where `a` moves from at-or-above `b` to strictly below it."""
    below = a < b
    was_at_or_above = (a.shift(1) >= b.shift(1)).fillna(False).astype(bool)
    return below & was_at_or_above
