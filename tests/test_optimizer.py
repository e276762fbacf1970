"""Tests for the brute-force parameter optimizer and its cache."""

import pytest

from combo_forge.backtesting.optimizer import ParameterOptimizer, optimize
from combo_forge.backtesting.simulator import simulate
from combo_forge.backtesting.strategies import (
    ParamRange,
    SearchSpace,
    SmaCrossoverParams,
    StrategyKind,
    strategy_for,
)


def test_best_candidate_maximizes_return(oscillating, small_spaces):
    space = small_spaces[StrategyKind.SMA_CROSSOVER]
    result = optimize(StrategyKind.SMA_CROSSOVER, oscillating, space)

    assert result.candidates_tested == space.size
    returns = []
    for values in space.candidates():
        strategy = strategy_for(StrategyKind.SMA_CROSSOVER, SmaCrossoverParams(**values))
        returns.append(simulate(oscillating, strategy.entry_signal(oscillating),
                                strategy.exit_signal(oscillating)).risk.rendement)
    assert result.in_sample_return == pytest.approx(max(returns))


def test_ties_keep_first_candidate(flat):
    # a flat series never crosses: every candidate returns 0
    space = SearchSpace((ParamRange.choices("short_period", 3, 4, 5), ParamRange.choices("long_period", 10)))
    result = optimize("sma_crossover", flat, space)
    assert result.in_sample_return == 0.0
    assert result.params == SmaCrossoverParams(short_period=3, long_period=10)


def test_invalid_candidates_skipped(flat):
    space = SearchSpace((ParamRange.choices("short_period", 5, 30), ParamRange.choices("long_period", 20)))
    result = optimize(StrategyKind.SMA_CROSSOVER, flat, space)
    assert result.candidates_tested == 1
    assert result.params.short_period == 5


def test_no_valid_candidate_falls_back_to_defaults(flat):
    space = SearchSpace((ParamRange.choices("short_period", 30), ParamRange.choices("long_period", 20)))
    result = optimize(StrategyKind.SMA_CROSSOVER, flat, space)
    assert result.candidates_tested == 0
    assert result.params == SmaCrossoverParams()


def test_cache_by_kind_and_window(oscillating, small_spaces):
    optimizer = ParameterOptimizer(search_spaces=small_spaces)
    window = oscillating.subrange(0, 50)

    first = optimizer.optimize(StrategyKind.SMA_CROSSOVER, window, 0, 50)
    second = optimizer.optimize(StrategyKind.SMA_CROSSOVER, window, 0, 50)
    assert second is first
    assert (optimizer.hits, optimizer.misses) == (1, 1)

    optimizer.optimize(StrategyKind.SMA_CROSSOVER, oscillating.subrange(10, 60), 10, 60)
    optimizer.optimize(StrategyKind.MEAN_REVERSION, window, 0, 50)
    assert optimizer.misses == 3
