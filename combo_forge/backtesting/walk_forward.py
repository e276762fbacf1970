"""
K-fold walk-forward evaluator.

For one entry/exit strategy mix on one Series:

    fold 0: [==OPTIM==][TEST]
    fold 1:    [==OPTIM==][TEST]
    fold 2:       [==OPTIM==][TEST]
    ...

    optim_window = max(1, round(total * optim_window_pct))
    test_window  = max(1, round(total * test_window_pct))
    fold_size    = max(1, (total - optim_window - test_window) // k_folds)
    start(f)     = f * fold_size

Per fold, every constituent strategy is re-optimized on the OPTIM window,
then the composite mix is simulated on OPTIM (train) and on TEST with the
same parameters. A fold whose test/train return ratio falls outside
[overfit_low, overfit_high] is overfit; an overfit or unstable fold is
filtered out.

Selection: the best fold by test return among folds that survived the
filter, else the best fold overall. Fold test metrics are also averaged
into an aggregate result, which carries its own coarser overfit / stability
flag computed from the averaged train and test returns.

Zero executable folds yield a sentinel aggregate (return = -inf) so the
mix can never win a comparison.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields

import numpy as np

from combo_forge.backtesting.filters import (
    StrategyFilterConfig,
    annotate,
    is_stable_and_simple,
    swing_trade_score,
)
from combo_forge.backtesting.optimizer import ParameterOptimizer
from combo_forge.backtesting.series import Series
from combo_forge.backtesting.simulator import RiskResult, SimulationConfig, simulate
from combo_forge.backtesting.strategies import (
    STRATEGY_REGISTRY,
    StrategyKind,
    StrategyParams,
    composite,
    strategy_for,
)

log = logging.getLogger("forge.walk_forward")


@dataclass
class WalkForwardConfig:
    """Window geometry and overfit band."""
    optim_window_pct: float = 0.2
    test_window_pct: float = 0.1
    step_pct: float = 0.1          # Carried in run context; fold starts use fold_size
    k_folds: int = 5
    overfit_low: float = 0.7
    overfit_high: float = 1.3


@dataclass(frozen=True)
class FoldWindow:
    """Bar bounds of one fold: OPTIM = [start, split), TEST = [split, end)."""
    index: int
    start: int
    split: int
    end: int


@dataclass
class Fold:
    """One executed fold."""
    window: FoldWindow
    entry_params: dict[StrategyKind, StrategyParams]
    exit_params: dict[StrategyKind, StrategyParams]
    train_result: RiskResult
    test_result: RiskResult
    overfit_ratio: float
    overfit: bool

    @property
    def filtered_out(self) -> bool:
        return self.test_result.filtered_out


@dataclass
class WalkForwardResult:
    """All folds of one mix plus aggregate and selection."""
    entry_kinds: tuple[StrategyKind, ...]
    exit_kinds: tuple[StrategyKind, ...]
    optim_window: int
    test_window: int
    folds: list[Fold] = field(default_factory=list)
    aggregate: RiskResult = field(default_factory=RiskResult.sentinel)
    selected: Fold | None = None
    aggregate_overfit_ratio: float = 0.0
    aggregate_overfit: bool = True

    @property
    def fold_count(self) -> int:
        return len(self.folds)

    @property
    def entry_params(self) -> dict[StrategyKind, StrategyParams]:
        return dict(self.selected.entry_params) if self.selected else {}

    @property
    def exit_params(self) -> dict[StrategyKind, StrategyParams]:
        return dict(self.selected.exit_params) if self.selected else {}


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def window_sizes(total: int, config: WalkForwardConfig) -> tuple[int, int]:
    """(optim_window, test_window) in bars for a series of `total` bars, each at least 1."""
    return (
        max(1, _round_half_up(total * config.optim_window_pct)),
        max(1, _round_half_up(total * config.test_window_pct)),
    )


def fold_windows(total: int, config: WalkForwardConfig | None = None) -> list[FoldWindow]:
    """
    The folds that fit inside `total` bars, in order.

    Stops at the first fold that would run past the end; fewer folds than
    k_folds is normal for short histories.
    """
    if config is None:
        config = WalkForwardConfig()
    optim, test = window_sizes(total, config)
    fold_size = max(1, (total - optim - test) // config.k_folds)

    windows = []
    for f in range(config.k_folds):
        start = f * fold_size
        if start + optim + test > total:
            break
        windows.append(FoldWindow(index=f, start=start, split=start + optim, end=start + optim + test))
    return windows


def overfit_ratio(train_return: float, test_return: float) -> float:
    """test / train, with a zero train return treated as 1."""
    return test_return / (train_return if train_return != 0.0 else 1.0)


def is_overfit(ratio: float, config: WalkForwardConfig | None = None) -> bool:
    if config is None:
        config = WalkForwardConfig()
    return ratio < config.overfit_low or ratio > config.overfit_high


def param_count(kinds: tuple[StrategyKind, ...] | list[StrategyKind]) -> int:
    """Total tunable parameters across the distinct kinds of a mix."""
    return sum(len(fields(STRATEGY_REGISTRY[k].params_type)) for k in dict.fromkeys(kinds))


def run_mix(
    series: Series,
    entry_params: dict[StrategyKind, StrategyParams],
    exit_params: dict[StrategyKind, StrategyParams],
    config: SimulationConfig | None = None,
) -> RiskResult:
    """Simulate a parameterized mix on `series` (signals derived on that series)."""
    entry = composite([strategy_for(k, p).entry_signal(series) for k, p in entry_params.items()])
    exit_ = composite([strategy_for(k, p).exit_signal(series) for k, p in exit_params.items()])
    return simulate(series, entry, exit_, config).risk


def aggregate_results(results: list[RiskResult]) -> RiskResult:
    """
    Arithmetic mean of each metric; trade count is summed.

    The swing score stays at 0; evaluate() scores the aggregate itself.
    """
    if not results:
        return RiskResult.sentinel()

    def mean(attr: str) -> float:
        return float(np.mean([getattr(r, attr) for r in results]))

    return RiskResult(
        rendement=mean("rendement"),
        max_drawdown=mean("max_drawdown"),
        trade_count=sum(r.trade_count for r in results),
        win_rate=mean("win_rate"),
        avg_pnl=mean("avg_pnl"),
        profit_factor=mean("profit_factor"),
        avg_trade_bars=mean("avg_trade_bars"),
        max_trade_gain=mean("max_trade_gain"),
        max_trade_loss=mean("max_trade_loss"),
    )


def evaluate(
    series: Series,
    entry_kinds: tuple[StrategyKind, ...],
    exit_kinds: tuple[StrategyKind, ...],
    config: WalkForwardConfig | None = None,
    sim_config: SimulationConfig | None = None,
    filter_config: StrategyFilterConfig | None = None,
    optimizer: ParameterOptimizer | None = None,
) -> WalkForwardResult:
    """Walk-forward evaluation of one entry/exit mix on `series`."""
    if not entry_kinds or not exit_kinds:
        raise ValueError("a mix needs at least one entry and one exit strategy")
    if config is None:
        config = WalkForwardConfig()
    if sim_config is None:
        sim_config = SimulationConfig()
    if filter_config is None:
        filter_config = StrategyFilterConfig()
    if optimizer is None:
        optimizer = ParameterOptimizer(sim_config)

    entry_kinds = tuple(entry_kinds)
    exit_kinds = tuple(exit_kinds)
    total = series.bar_count
    optim, test = window_sizes(total, config)
    result = WalkForwardResult(
        entry_kinds=entry_kinds, exit_kinds=exit_kinds,
        optim_window=optim, test_window=test,
    )
    windows = fold_windows(total, config)
    if len(windows) < config.k_folds:
        log.debug(
            "%s: %d of %d folds fit in %d bars (optim=%d test=%d)",
            series.symbol, len(windows), config.k_folds, total, optim, test,
        )
    if not windows:
        log.warning(
            "%s: no walk-forward fold fits in %d bars (optim=%d test=%d), returning sentinel",
            series.symbol, total, optim, test,
        )
        return result

    n_params = param_count(entry_kinds + exit_kinds)
    train_returns: list[float] = []
    test_returns: list[float] = []

    for w in windows:
        optim_series = series.subrange(w.start, w.split)
        test_series = series.subrange(w.split, w.end)

        tuned = {
            kind: optimizer.optimize(kind, optim_series, w.start, w.split).params
            for kind in dict.fromkeys(entry_kinds + exit_kinds)
        }
        entry_params = {k: tuned[k] for k in entry_kinds}
        exit_params = {k: tuned[k] for k in exit_kinds}

        train = run_mix(optim_series, entry_params, exit_params, sim_config)
        train.swing_trade_score = swing_trade_score(train)
        tested = run_mix(test_series, entry_params, exit_params, sim_config)

        ratio = overfit_ratio(train.rendement, tested.rendement)
        overfit = is_overfit(ratio, config)
        annotate(tested, filter_config, n_params, overfit=overfit)

        train_returns.append(train.rendement)
        test_returns.append(tested.rendement)
        result.folds.append(Fold(
            window=w,
            entry_params=entry_params,
            exit_params=exit_params,
            train_result=train,
            test_result=tested,
            overfit_ratio=ratio,
            overfit=overfit,
        ))
        log.debug(
            "%s WF fold %d/%d: optim[%d:%d] test[%d:%d] train=%.4f test=%.4f ratio=%.2f%s",
            series.symbol, w.index + 1, config.k_folds, w.start, w.split, w.split, w.end,
            train.rendement, tested.rendement, ratio,
            " FILTERED" if tested.filtered_out else "",
        )

    # ── Selection ──
    best = None
    for fold in result.folds:
        if best is None or fold.test_result.rendement > best.test_result.rendement:
            best = fold
    best_kept = None
    for fold in result.folds:
        if fold.filtered_out:
            continue
        if best_kept is None or fold.test_result.rendement > best_kept.test_result.rendement:
            best_kept = fold
    result.selected = best_kept if best_kept is not None else best

    # ── Aggregate ──
    aggregate = aggregate_results([f.test_result for f in result.folds])
    agg_ratio = overfit_ratio(float(np.mean(train_returns)), float(np.mean(test_returns)))
    agg_overfit = is_overfit(agg_ratio, config)
    aggregate.swing_trade_score = swing_trade_score(aggregate)
    aggregate.filtered_out = agg_overfit or not is_stable_and_simple(aggregate, filter_config, n_params)
    result.aggregate = aggregate
    result.aggregate_overfit_ratio = agg_ratio
    result.aggregate_overfit = agg_overfit
    return result
