"""Tests for the stability gate and the swing-trade score."""

import pytest

from combo_forge.backtesting.filters import StrategyFilterConfig, annotate, is_stable_and_simple, swing_trade_score
from combo_forge.backtesting.simulator import RiskResult


@pytest.fixture
def healthy():
    return RiskResult(
        rendement=0.25, max_drawdown=0.1, trade_count=10, win_rate=0.5, avg_pnl=40.0,
        profit_factor=1.6, avg_trade_bars=5.0, max_trade_gain=300.0, max_trade_loss=-200.0,
    )


def test_healthy_result_passes(healthy):
    assert is_stable_and_simple(healthy)


@pytest.mark.parametrize("field,value", [
    ("max_drawdown", 0.6),
    ("profit_factor", 0.8),
    ("win_rate", 0.1),
    ("avg_trade_bars", 0.5),
    ("avg_trade_bars", 45.0),
    ("max_trade_gain", 100.0),          # 100 / 200 < 0.7
])
def test_each_threshold_rejects(healthy, field, value):
    setattr(healthy, field, value)
    assert not is_stable_and_simple(healthy)


def test_gain_loss_ratio_skipped_without_losses(healthy):
    healthy.max_trade_loss = 0.0
    healthy.max_trade_gain = 1.0
    assert is_stable_and_simple(healthy)


def test_too_many_params(healthy):
    assert is_stable_and_simple(healthy, param_count=15)
    assert not is_stable_and_simple(healthy, param_count=16)
    assert is_stable_and_simple(healthy, StrategyFilterConfig(max_param_count=20), param_count=16)


def test_swing_score_formula(healthy):
    expected = 2.0 * 0.25 + 1.5 * 0.5 + 1.0 * 1.6 - 2.0 * 0.1 + 1.0 * 40.0
    assert swing_trade_score(healthy) == pytest.approx(expected)


def test_swing_score_caps_profit_factor(healthy):
    healthy.profit_factor = 500.0
    capped = swing_trade_score(healthy)
    healthy.profit_factor = 10.0
    assert capped == pytest.approx(swing_trade_score(healthy))


def test_swing_score_of_sentinel():
    assert swing_trade_score(RiskResult.sentinel()) == float("-inf")


def test_annotate_in_place(healthy):
    out = annotate(healthy, overfit=True)
    assert out is healthy
    assert healthy.filtered_out
    assert healthy.swing_trade_score == pytest.approx(swing_trade_score(healthy))

    annotate(healthy)
    assert not healthy.filtered_out
