"""
Brute-force parameter optimizer.

Sweeps every candidate of a kind's search space on one Series, running a
full single-strategy simulation (the kind's own entry and exit rules) per
candidate, and keeps the tuple with the highest return.

Cost = product of per-dimension cardinalities, per fold, per kind. Inside
one combination search the same kind is optimized on the same fold window
for every mix it appears in, so ParameterOptimizer memoizes by
(kind, window) and each sweep runs once.

Determinism: candidates are enumerated in declaration order and only a
strictly better return replaces the incumbent, so ties keep the first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from combo_forge.backtesting.series import Series
from combo_forge.backtesting.simulator import SimulationConfig, simulate
from combo_forge.backtesting.strategies import (
    STRATEGY_REGISTRY,
    SearchSpace,
    StrategyKind,
    StrategyParams,
    kind_from_name,
    params_for,
)

log = logging.getLogger("forge.optimizer")


@dataclass
class OptimizationResult:
    """Best parameters of one sweep."""
    kind: StrategyKind
    params: StrategyParams
    in_sample_return: float
    candidates_tested: int


def optimize(
    kind: StrategyKind | str,
    series: Series,
    search_space: SearchSpace | None = None,
    config: SimulationConfig | None = None,
) -> OptimizationResult:
    """
    Sweep `search_space` (the kind's default grid if None) on `series`.

    Invalid tuples (e.g. short period >= long period) are skipped. If no
    candidate is valid the kind's default parameters are scored instead.
    """
    kind = kind_from_name(kind)
    strategy_cls = STRATEGY_REGISTRY[kind]
    if search_space is None:
        search_space = strategy_cls.search_space()
    if config is None:
        config = SimulationConfig()

    best_params: StrategyParams | None = None
    best_return = float("-inf")
    tested = 0

    for values in search_space.candidates():
        params = params_for(kind, values)
        if not params.is_valid():
            continue
        tested += 1
        strategy = strategy_cls(params)
        result = simulate(series, strategy.entry_signal(series), strategy.exit_signal(series), config)
        if result.risk.rendement > best_return:
            best_return = result.risk.rendement
            best_params = params

    if best_params is None:
        log.warning("%s: no valid candidate in a %d-point grid, using defaults", kind.value, search_space.size)
        best_params = strategy_cls.params_type()
        strategy = strategy_cls(best_params)
        result = simulate(series, strategy.entry_signal(series), strategy.exit_signal(series), config)
        best_return = result.risk.rendement

    log.debug(
        "%s: best %s -> %.4f over %d candidates (%d bars)",
        kind.value, best_params, best_return, tested, series.bar_count,
    )
    return OptimizationResult(
        kind=kind,
        params=best_params,
        in_sample_return=best_return,
        candidates_tested=tested,
    )


class ParameterOptimizer:
    """
    Memoizing front end to optimize().

    Keys are (kind, start, end) of the window inside the full series, so
    one instance must only ever see sub-ranges of a single series. Not
    shared across threads: each symbol's search owns its own instance.
    """

    def __init__(
        self,
        config: SimulationConfig | None = None,
        search_spaces: dict[StrategyKind, SearchSpace] | None = None,
    ):
        self.config = config or SimulationConfig()
        self.search_spaces = search_spaces or {}
        self._cache: dict[tuple[StrategyKind, int, int], OptimizationResult] = {}
        self.hits = 0
        self.misses = 0

    def optimize(self, kind: StrategyKind, series: Series, start: int, end: int) -> OptimizationResult:
        key = (kind, start, end)
        cached = self._cache.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        result = optimize(kind, series, self.search_spaces.get(kind), self.config)
        self._cache[key] = result
        return result
