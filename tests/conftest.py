"""
Shared fixtures.

Deterministic series (no randomness anywhere) so every search, fold and
trade in the suite is reproducible.
"""

from datetime import datetime, timedelta

import numpy as np
import pytest

from combo_forge.backtesting.combinations import ComboResult, OptimContext, SearchConfig
from combo_forge.backtesting.series import Bar, Series
from combo_forge.backtesting.simulator import RiskResult, SimulationConfig
from combo_forge.backtesting.strategies import (
    ImprovedTrendParams,
    ParamRange,
    SearchSpace,
    SmaCrossoverParams,
    StrategyKind,
)
from combo_forge.backtesting.walk_forward import WalkForwardConfig
from combo_forge.services.result_store import ResultStore
from combo_forge.utils.db import make_engine

START = datetime(2024, 1, 1)


# ============================================================
# SERIES BUILDERS
# ============================================================

def make_series(symbol: str, closes, spread: float = 0.005) -> Series:
    """Daily bars around the given closes: high/low = close * (1 +/- spread)."""
    bars = [
        Bar(
            timestamp=START + timedelta(days=i),
            open=float(c),
            high=float(c) * (1 + spread),
            low=float(c) * (1 - spread),
            close=float(c),
            volume=1_000.0,
        )
        for i, c in enumerate(closes)
    ]
    return Series(symbol, bars)


def trend_closes(count: int = 200, growth: float = 0.01, start: float = 100.0) -> np.ndarray:
    return start * (1 + growth) ** np.arange(count)


def wave_closes(count: int = 200, amplitude: float = 0.08, period: int = 20) -> np.ndarray:
    t = np.arange(count)
    return 100.0 * (1 + amplitude * np.sin(2 * np.pi * t / period)) + 0.05 * t


@pytest.fixture
def uptrend():
    """200 bars, close +1% per bar."""
    return make_series("UP", trend_closes())


@pytest.fixture
def downtrend():
    return make_series("DOWN", trend_closes(growth=-0.01))


@pytest.fixture
def flat():
    return make_series("FLAT", np.full(60, 50.0))


@pytest.fixture
def oscillating():
    """200 bars of a sine wave with a slight upward drift."""
    return make_series("WAVE", wave_closes())


@pytest.fixture
def short_series():
    return make_series("SHORT", trend_closes(count=20))


# ============================================================
# SEARCH CONFIG
# ============================================================

SMALL_SPACES = {
    StrategyKind.IMPROVED_TREND: SearchSpace((
        ParamRange.choices("trend_period", 20),
        ParamRange.choices("short_ma_period", 5, 10),
        ParamRange.choices("long_ma_period", 15),
        ParamRange.choices("breakout_threshold", 0.005),
        ParamRange.choices("use_rsi_filter", False),
        ParamRange.choices("rsi_period", 14),
    )),
    StrategyKind.SMA_CROSSOVER: SearchSpace((
        ParamRange.choices("short_period", 3, 5),
        ParamRange.choices("long_period", 10),
    )),
    StrategyKind.MEAN_REVERSION: SearchSpace((
        ParamRange.choices("sma_period", 10),
        ParamRange.choices("threshold_pct", 2.0, 4.0),
    )),
}


@pytest.fixture
def small_spaces():
    return dict(SMALL_SPACES)


@pytest.fixture
def search_config():
    """Two-kind universe with tiny grids: 9 mixes, a few candidates each."""
    return SearchConfig(
        nb_in=2,
        nb_out=2,
        universe=(StrategyKind.IMPROVED_TREND, StrategyKind.SMA_CROSSOVER),
        search_spaces=dict(SMALL_SPACES),
        walk_forward=WalkForwardConfig(k_folds=3),
        simulation=SimulationConfig(),
    )


@pytest.fixture
def tiny_search_config():
    """One entry kind, one exit kind: a single mix."""
    return SearchConfig(
        nb_in=1,
        nb_out=1,
        universe=(StrategyKind.SMA_CROSSOVER,),
        search_spaces=dict(SMALL_SPACES),
        walk_forward=WalkForwardConfig(k_folds=2),
    )


# ============================================================
# STORE
# ============================================================

@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'combo_forge_test.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return ResultStore(engine)


def make_combo(
    symbol: str = "AAA",
    rendement: float = 0.2,
    check: float = 0.1,
    profit_factor: float = 1.8,
    max_drawdown: float = 0.1,
    win_rate: float = 0.6,
    filtered_out: bool = False,
    entry_params=None,
    exit_params=None,
) -> ComboResult:
    """A hand-built ComboResult with consistent scores."""
    if entry_params is None:
        entry_params = {StrategyKind.SMA_CROSSOVER: SmaCrossoverParams(short_period=5, long_period=20)}
    if exit_params is None:
        exit_params = {StrategyKind.IMPROVED_TREND: ImprovedTrendParams(use_rsi_filter=False)}
    total = rendement + check
    diff = rendement - check
    return ComboResult(
        symbol=symbol,
        entry_kinds=tuple(entry_params),
        exit_kinds=tuple(exit_params),
        entry_params=dict(entry_params),
        exit_params=dict(exit_params),
        result=RiskResult(
            rendement=rendement,
            max_drawdown=max_drawdown,
            trade_count=12,
            win_rate=win_rate,
            avg_pnl=25.0,
            profit_factor=profit_factor,
            avg_trade_bars=6.5,
            max_trade_gain=400.0,
            max_trade_loss=-150.0,
            filtered_out=filtered_out,
        ),
        check=RiskResult(rendement=check, trade_count=3, win_rate=0.67, profit_factor=2.0),
        rendement_sum=total,
        rendement_diff=diff,
        rendement_score=total - abs(diff),
        context=OptimContext(
            initial_capital=10_000.0,
            risk_per_trade=0.15,
            stop_loss_pct=0.05,
            take_profit_pct=0.10,
            sample_count=200,
        ),
        fold_count=5,
        aggregate_overfit_ratio=0.9,
        combinations_tested=441,
    )


@pytest.fixture
def combo_factory():
    return make_combo


@pytest.fixture
def series_factory():
    return make_series
