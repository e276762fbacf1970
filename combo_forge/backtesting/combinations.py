"""
Combinatorial entry/exit strategy search.

Enumerates every size-n subset of the strategy universe for the entry side
(n = 1..nb_in) and, independently, for the exit side (n = 1..nb_out):

    C(k, n) subsets per size, or C(k-1, n-1) when a known-best strategy
    must be part of every subset.

Each (entry subset, exit subset) pair is run through the walk-forward
evaluator and the pair with the highest aggregated return wins. The
winner is then re-run, without re-optimizing, on the trailing test-window
bars of the full series (the check window) and scored for consistency:

    rendement_sum   = result + check
    rendement_diff  = result - check
    rendement_score = sum - |diff|  ( = 2 * min(result, check) )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from typing import Any, Sequence

from combo_forge.backtesting.filters import StrategyFilterConfig, annotate
from combo_forge.backtesting.optimizer import ParameterOptimizer
from combo_forge.backtesting.series import Series
from combo_forge.backtesting.simulator import RiskResult, SimulationConfig
from combo_forge.backtesting.strategies import (
    ALL_KINDS,
    SearchSpace,
    StrategyKind,
    StrategyParams,
    kind_from_name,
    params_from_dict,
    params_to_dict,
)
from combo_forge.backtesting.walk_forward import (
    WalkForwardConfig,
    WalkForwardResult,
    evaluate,
    param_count,
    run_mix,
    window_sizes,
)
from combo_forge.errors import InsufficientDataError

log = logging.getLogger("forge.combinations")


@dataclass
class SearchConfig:
    """Everything one combination search needs."""
    nb_in: int = 2
    nb_out: int = 2
    universe: tuple[StrategyKind, ...] = ALL_KINDS
    search_spaces: dict[StrategyKind, SearchSpace] = field(default_factory=dict)
    walk_forward: WalkForwardConfig = field(default_factory=WalkForwardConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    filters: StrategyFilterConfig = field(default_factory=StrategyFilterConfig)

    @classmethod
    def from_settings(cls, settings) -> SearchConfig:
        """Build from a combo_forge.config.Settings instance."""
        return cls(
            nb_in=settings.nb_in,
            nb_out=settings.nb_out,
            walk_forward=WalkForwardConfig(
                optim_window_pct=settings.optim_window_pct,
                test_window_pct=settings.test_window_pct,
                step_pct=settings.step_pct,
                k_folds=settings.k_folds,
            ),
            simulation=SimulationConfig(
                initial_capital=settings.initial_capital,
                risk_per_trade=settings.risk_per_trade,
                stop_loss_pct=settings.stop_loss_pct,
                take_profit_pct=settings.take_profit_pct,
            ),
            filters=StrategyFilterConfig(
                max_drawdown=settings.filter_max_drawdown,
                min_profit_factor=settings.filter_min_profit_factor,
                min_win_rate=settings.filter_min_win_rate,
                min_avg_trade_bars=settings.filter_min_avg_trade_bars,
                max_avg_trade_bars=settings.filter_max_avg_trade_bars,
                min_gain_loss_ratio=settings.filter_min_gain_loss_ratio,
                max_param_count=settings.filter_max_param_count,
            ),
        )


@dataclass
class OptimContext:
    """Run context persisted next to a result."""
    initial_capital: float
    risk_per_trade: float
    stop_loss_pct: float
    take_profit_pct: float
    sample_count: int                    # bars in the full series


@dataclass
class ComboResult:
    """Best entry/exit mix for one symbol."""
    symbol: str
    entry_kinds: tuple[StrategyKind, ...]
    exit_kinds: tuple[StrategyKind, ...]
    entry_params: dict[StrategyKind, StrategyParams]
    exit_params: dict[StrategyKind, StrategyParams]
    result: RiskResult                   # aggregated across folds
    check: RiskResult                    # trailing held-out window
    rendement_sum: float
    rendement_diff: float
    rendement_score: float
    context: OptimContext
    fold_count: int = 0
    aggregate_overfit_ratio: float = 0.0
    combinations_tested: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entry_kinds": [k.value for k in self.entry_kinds],
            "exit_kinds": [k.value for k in self.exit_kinds],
            "entry_params": [params_to_dict(k, p) for k, p in self.entry_params.items()],
            "exit_params": [params_to_dict(k, p) for k, p in self.exit_params.items()],
            "result": self.result.to_dict(),
            "check": self.check.to_dict(),
            "rendement_sum": self.rendement_sum,
            "rendement_diff": self.rendement_diff,
            "rendement_score": self.rendement_score,
            "context": {
                "initial_capital": self.context.initial_capital,
                "risk_per_trade": self.context.risk_per_trade,
                "stop_loss_pct": self.context.stop_loss_pct,
                "take_profit_pct": self.context.take_profit_pct,
                "sample_count": self.context.sample_count,
            },
            "fold_count": self.fold_count,
            "aggregate_overfit_ratio": self.aggregate_overfit_ratio,
            "combinations_tested": self.combinations_tested,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComboResult:
        def _params(blobs: list[dict]) -> dict[StrategyKind, StrategyParams]:
            return dict(params_from_dict(b) for b in blobs)

        def _when(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            symbol=data["symbol"],
            entry_kinds=tuple(kind_from_name(k) for k in data["entry_kinds"]),
            exit_kinds=tuple(kind_from_name(k) for k in data["exit_kinds"]),
            entry_params=_params(data["entry_params"]),
            exit_params=_params(data["exit_params"]),
            result=RiskResult.from_dict(data["result"]),
            check=RiskResult.from_dict(data["check"]),
            rendement_sum=data["rendement_sum"],
            rendement_diff=data["rendement_diff"],
            rendement_score=data["rendement_score"],
            context=OptimContext(**data["context"]),
            fold_count=data.get("fold_count", 0),
            aggregate_overfit_ratio=data.get("aggregate_overfit_ratio", 0.0),
            combinations_tested=data.get("combinations_tested", 0),
            created_at=_when(data.get("created_at")),
            updated_at=_when(data.get("updated_at")),
        )


def generate_combinations(
    universe: Sequence[StrategyKind],
    size: int,
    mandatory: StrategyKind | None = None,
) -> list[tuple[StrategyKind, ...]]:
    """
    All size-`size` subsets of `universe`, in lexicographic order of the
    universe. With `mandatory`, only subsets that contain it.

    Empty subsets are never produced; size must be >= 1.
    """
    if size < 1:
        raise ValueError("combination size must be >= 1")
    universe = tuple(dict.fromkeys(universe))
    if mandatory is None:
        return list(combinations(universe, size))
    if mandatory not in universe:
        raise ValueError(f"mandatory strategy {mandatory.value} is not in the universe")
    others = tuple(k for k in universe if k != mandatory)
    return [(mandatory, *rest) for rest in combinations(others, size - 1)]


def consistency_scores(result_return: float, check_return: float) -> tuple[float, float, float]:
    """(sum, diff, score) where score = sum - |diff|."""
    total = result_return + check_return
    diff = result_return - check_return
    return total, diff, total - abs(diff)


def is_better(candidate: WalkForwardResult, incumbent: WalkForwardResult | None) -> bool:
    """A mix that ran no fold never wins; otherwise strictly higher aggregated return wins."""
    if candidate.fold_count == 0:
        return False
    return incumbent is None or candidate.aggregate.rendement > incumbent.aggregate.rendement


def select_best(results: Sequence[WalkForwardResult]) -> WalkForwardResult | None:
    """First mix with the highest aggregated return, ignoring zero-fold sentinels."""
    best = None
    for result in results:
        if is_better(result, best):
            best = result
    return best


def check_result(
    series: Series,
    entry_params: dict[StrategyKind, StrategyParams],
    exit_params: dict[StrategyKind, StrategyParams],
    config: SearchConfig | None = None,
) -> RiskResult:
    """
    Re-run a parameterized mix on the trailing test window of the full
    series, without re-optimizing.
    """
    if config is None:
        config = SearchConfig()
    if series.bar_count == 0:
        return RiskResult()
    _, test_window = window_sizes(series.bar_count, config.walk_forward)
    check_series = series.tail(test_window)
    result = run_mix(check_series, entry_params, exit_params, config.simulation)
    n_params = param_count(list(entry_params) + list(exit_params))
    return annotate(result, config.filters, n_params)


def find_best_single(
    series: Series,
    config: SearchConfig | None = None,
    optimizer: ParameterOptimizer | None = None,
) -> tuple[StrategyKind, StrategyKind] | None:
    """
    Best one-strategy entry and one-strategy exit for `series`.

    Every (entry kind, exit kind) pair of the universe is walk-forward
    evaluated and ranked the same way mixes are. Returns None when no
    pair could run a fold. Pass the optimizer of the following combination
    search so the per-fold sweeps are shared.
    """
    if config is None:
        config = SearchConfig()
    if optimizer is None:
        optimizer = ParameterOptimizer(config.simulation, config.search_spaces)

    best = select_best([
        evaluate(series, (entry,), (exit_,), config.walk_forward, config.simulation, config.filters, optimizer)
        for entry in config.universe
        for exit_ in config.universe
    ])
    if best is None:
        return None
    log.debug(
        "%s: best single in=%s out=%s rendement=%.4f",
        series.symbol, best.entry_kinds[0].value, best.exit_kinds[0].value, best.aggregate.rendement,
    )
    return best.entry_kinds[0], best.exit_kinds[0]


def find_best_combination(
    series: Series,
    config: SearchConfig | None = None,
    mandatory_entry: StrategyKind | None = None,
    mandatory_exit: StrategyKind | None = None,
    optimizer: ParameterOptimizer | None = None,
) -> ComboResult:
    """
    Search every entry/exit subset pair and return the best mix.

    Raises InsufficientDataError when no pair could run a single fold
    (series too short for the configured windows). With `mandatory_entry`
    or `mandatory_exit`, every subset on that side contains the given kind.
    """
    if config is None:
        config = SearchConfig()
    if optimizer is None:
        optimizer = ParameterOptimizer(config.simulation, config.search_spaces)

    best: WalkForwardResult | None = None
    tested = 0
    for n_in in range(1, config.nb_in + 1):
        entry_sets = generate_combinations(config.universe, n_in, mandatory_entry)
        for n_out in range(1, config.nb_out + 1):
            exit_sets = generate_combinations(config.universe, n_out, mandatory_exit)
            for entry_kinds in entry_sets:
                for exit_kinds in exit_sets:
                    wf = evaluate(
                        series, entry_kinds, exit_kinds,
                        config.walk_forward, config.simulation, config.filters, optimizer,
                    )
                    tested += 1
                    if is_better(wf, best):
                        best = wf
                        log.debug(
                            "%s: new best in=%s out=%s rendement=%.4f (%d folds)",
                            series.symbol,
                            [k.value for k in entry_kinds], [k.value for k in exit_kinds],
                            wf.aggregate.rendement, wf.fold_count,
                        )

    if best is None:
        raise InsufficientDataError(
            f"{series.symbol}: {series.bar_count} bars is too short for any walk-forward fold"
        )

    check = check_result(series, best.entry_params, best.exit_params, config)
    rendement_sum, rendement_diff, rendement_score = consistency_scores(
        best.aggregate.rendement, check.rendement,
    )
    sim = config.simulation
    combo = ComboResult(
        symbol=series.symbol,
        entry_kinds=best.entry_kinds,
        exit_kinds=best.exit_kinds,
        entry_params=best.entry_params,
        exit_params=best.exit_params,
        result=best.aggregate,
        check=check,
        rendement_sum=rendement_sum,
        rendement_diff=rendement_diff,
        rendement_score=rendement_score,
        context=OptimContext(
            initial_capital=sim.initial_capital,
            risk_per_trade=sim.risk_per_trade,
            stop_loss_pct=sim.stop_loss_pct,
            take_profit_pct=sim.take_profit_pct,
            sample_count=series.bar_count,
        ),
        fold_count=best.fold_count,
        aggregate_overfit_ratio=best.aggregate_overfit_ratio,
        combinations_tested=tested,
    )
    log.info(
        "%s: best in=%s out=%s rendement=%.4f check=%.4f score=%.4f (%d mixes, %d sweeps, %d cache hits)",
        series.symbol,
        [k.value for k in combo.entry_kinds], [k.value for k in combo.exit_kinds],
        combo.result.rendement, check.rendement, rendement_score,
        tested, optimizer.misses, optimizer.hits,
    )
    return combo
