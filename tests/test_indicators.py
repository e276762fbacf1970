"""Tests for the pandas indicator helpers."""

import numpy as np
import pandas as pd
import pytest

from combo_forge.backtesting import indicators as ind


def test_sma_uses_partial_windows():
    out = ind.sma(pd.Series([1.0, 2.0, 3.0, 4.0]), 2)
    assert out.tolist() == [1.0, 1.5, 2.5, 3.5]


def test_ema_first_value_is_seed():
    out = ind.ema(pd.Series([10.0, 20.0]), 3)
    assert out.iloc[0] == 10.0
    assert out.iloc[1] == pytest.approx(15.0)    # alpha = 2 / (3 + 1)


def test_rsi_all_gains_is_100():
    out = ind.rsi(pd.Series(np.arange(1.0, 30.0)), 14)
    assert out.iloc[0] == 0.0                     # no change yet
    assert (out.iloc[1:] == 100.0).all()


def test_rsi_all_losses_is_0():
    out = ind.rsi(pd.Series(np.arange(30.0, 1.0, -1.0)), 14)
    assert (out == 0.0).all()


def test_rsi_flat_is_0():
    out = ind.rsi(pd.Series(np.full(20, 5.0)), 14)
    assert (out == 0.0).all()


def test_rsi_bounded():
    close = pd.Series(100 + 5 * np.sin(np.arange(100) / 3.0))
    out = ind.rsi(close, 10)
    assert out.between(0, 100).all()


def test_channel_excludes_current_bar():
    high = pd.Series([1.0, 5.0, 3.0, 2.0])
    out = ind.highest_high(high, 2)
    assert np.isnan(out.iloc[0])
    assert out.iloc[1:].tolist() == [1.0, 5.0, 5.0]

    low = pd.Series([4.0, 1.0, 3.0, 2.0])
    assert ind.lowest_low(low, 2).iloc[1:].tolist() == [4.0, 1.0, 1.0]


def test_crossed_up_and_down():
    a = pd.Series([1.0, 2.0, 3.0, 2.0, 1.0])
    b = pd.Series([2.0, 2.0, 2.0, 2.0, 2.0])
    assert ind.crossed_up(a, b).tolist() == [False, False, True, False, False]
    assert ind.crossed_down(a, b).tolist() == [False, False, False, False, True]


def test_macd_zero_on_constant_series():
    out = ind.macd(pd.Series(np.full(40, 7.0)), 12, 26)
    assert np.allclose(out, 0.0)
