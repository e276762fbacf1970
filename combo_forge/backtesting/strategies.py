"""
Strategy catalog.

A closed set of six long-only strategy kinds. Each kind owns a frozen
parameter dataclass and produces two boolean signals over a Series:
- entry: when to open a position while flat
- exit: when to close an open position at the bar's close

Signals are re-derived for every Series they are evaluated on, so the
same parameters give different indicator values on a train window and
on the test window that follows it.

Each kind also declares its default parameter search space for the
brute-force optimizer (see optimizer.py). Design principle: few, coarse
parameters. The grid product is the dominant cost of a combination
search.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Iterator, Sequence

import numpy as np
import pandas as pd

from combo_forge.backtesting import indicators as ind
from combo_forge.backtesting.series import Series
from combo_forge.errors import UnknownStrategyError


class StrategyKind(Enum):
    IMPROVED_TREND = "improved_trend_following"
    SMA_CROSSOVER = "sma_crossover"
    RSI = "rsi"
    BREAKOUT = "breakout"
    MACD = "macd"
    MEAN_REVERSION = "mean_reversion"


# ═══════════════════════════════════════════════════════════════
# SIGNALS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Signal:
    """A boolean predicate per bar of the series it was derived on."""
    name: str
    values: np.ndarray

    def is_satisfied(self, index: int) -> bool:
        return bool(self.values[index])

    def __len__(self) -> int:
        return len(self.values)

    def __or__(self, other: Signal) -> Signal:
        if len(self) != len(other):
            raise ValueError(f"cannot combine signals of length {len(self)} and {len(other)}")
        return Signal(name=f"{self.name} | {other.name}", values=self.values | other.values)


def composite(signals: Sequence[Signal]) -> Signal:
    """OR of the given signals. A composite needs at least one constituent."""
    if not signals:
        raise ValueError("a composite signal needs at least one strategy")
    combined = signals[0]
    for signal in signals[1:]:
        combined = combined | signal
    return combined


# ═══════════════════════════════════════════════════════════════
# SEARCH SPACES
# ═══════════════════════════════════════════════════════════════


def adaptive_step(low: int, high: int) -> int:
    """Coarser steps for wide integer ranges."""
    return 4 if high - low > 20 else 2


@dataclass(frozen=True)
class ParamRange:
    """Candidate values for one parameter."""
    name: str
    values: tuple

    @classmethod
    def ints(cls, name: str, low: int, high: int, step: int | None = None) -> ParamRange:
        step = step or adaptive_step(low, high)
        return cls(name, tuple(range(low, high + 1, step)))

    @classmethod
    def floats(cls, name: str, low: float, high: float, step: float) -> ParamRange:
        count = int(round((high - low) / step)) + 1
        return cls(name, tuple(round(low + i * step, 10) for i in range(count)))

    @classmethod
    def choices(cls, name: str, *values: Any) -> ParamRange:
        return cls(name, tuple(values))

    @property
    def bounds(self) -> tuple:
        return (min(self.values), max(self.values))


@dataclass(frozen=True)
class SearchSpace:
    """Cartesian grid of parameter ranges, enumerated in declaration order."""
    ranges: tuple[ParamRange, ...]

    @property
    def size(self) -> int:
        total = 1
        for r in self.ranges:
            total *= len(r.values)
        return total

    def candidates(self) -> Iterator[dict[str, Any]]:
        names = [r.name for r in self.ranges]
        for combo in itertools.product(*(r.values for r in self.ranges)):
            yield dict(zip(names, combo))


# ═══════════════════════════════════════════════════════════════
# PARAMETERS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ImprovedTrendParams:
    trend_period: int = 20
    short_ma_period: int = 10
    long_ma_period: int = 20
    breakout_threshold: float = 0.005     # fraction above / below the long MA
    use_rsi_filter: bool = True
    rsi_period: int = 14

    def is_valid(self) -> bool:
        return (
            0 < self.short_ma_period < self.long_ma_period
            and self.trend_period > 0
            and self.rsi_period > 0
            and self.breakout_threshold >= 0
        )


@dataclass(frozen=True)
class SmaCrossoverParams:
    short_period: int = 5
    long_period: int = 20

    def is_valid(self) -> bool:
        return 0 < self.short_period < self.long_period


@dataclass(frozen=True)
class RsiParams:
    period: int = 14
    oversold: float = 30.0
    overbought: float = 70.0

    def is_valid(self) -> bool:
        return self.period > 0 and 0 <= self.oversold < self.overbought <= 100


@dataclass(frozen=True)
class BreakoutParams:
    lookback: int = 20

    def is_valid(self) -> bool:
        return self.lookback > 0


@dataclass(frozen=True)
class MacdParams:
    short_period: int = 12
    long_period: int = 26
    signal_period: int = 9

    def is_valid(self) -> bool:
        return 0 < self.short_period < self.long_period and self.signal_period > 0


@dataclass(frozen=True)
class MeanReversionParams:
    sma_period: int = 20
    threshold_pct: float = 2.0            # percent distance from the SMA

    def is_valid(self) -> bool:
        return self.sma_period > 0 and 0 < self.threshold_pct < 100


StrategyParams = (
    ImprovedTrendParams | SmaCrossoverParams | RsiParams
    | BreakoutParams | MacdParams | MeanReversionParams
)


@dataclass
class StrategyMeta:
    """Metadata about a strategy for the optimizer and reports."""
    name: str
    kind: StrategyKind
    param_count: int
    param_ranges: dict[str, tuple]        # {param_name: (min, max)}
    description: str


# ═══════════════════════════════════════════════════════════════
# STRATEGIES
# ═══════════════════════════════════════════════════════════════


class BaseStrategy(ABC):
    """Base class for the catalog. One instance = one kind + one parameter tuple."""

    kind: ClassVar[StrategyKind]
    params_type: ClassVar[type]
    label: ClassVar[str]
    description: ClassVar[str]

    def __init__(self, params: StrategyParams | None = None):
        if params is None:
            params = self.params_type()
        if not isinstance(params, self.params_type):
            raise TypeError(
                f"{type(self).__name__} expects {self.params_type.__name__}, got {type(params).__name__}"
            )
        self.params = params

    @abstractmethod
    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        """Boolean Series: open a position on this bar."""
        ...

    @abstractmethod
    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        """Boolean Series: close an open position on this bar."""
        ...

    @classmethod
    @abstractmethod
    def search_space(cls) -> SearchSpace:
        """Default optimizer grid."""
        ...

    @property
    def name(self) -> str:
        return self.kind.value

    def entry_signal(self, series: Series) -> Signal:
        return Signal(self.name, _as_bool_array(self.entry_rule(series.frame)))

    def exit_signal(self, series: Series) -> Signal:
        return Signal(self.name, _as_bool_array(self.exit_rule(series.frame)))

    def meta(self) -> StrategyMeta:
        space = self.search_space()
        return StrategyMeta(
            name=self.label,
            kind=self.kind,
            param_count=len(fields(self.params_type)),
            param_ranges={r.name: r.bounds for r in space.ranges},
            description=self.description,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.params})"


def _as_bool_array(rule: pd.Series) -> np.ndarray:
    return rule.fillna(False).to_numpy(dtype=bool)


class ImprovedTrendFollowing(BaseStrategy):
    """
    Trend following on moving averages instead of absolute extremes.

    Entry when the short MA is above the long MA and either the close
    clears the long MA by `breakout_threshold`, or the close crosses back
    above the short MA (pullback entry). An optional RSI filter skips
    entries into extreme overbought readings (RSI >= 80).

    Exit on the first close below the short MA, or when the close drops
    under the long MA by the threshold while the short MA is below it.
    """

    kind = StrategyKind.IMPROVED_TREND
    params_type = ImprovedTrendParams
    label = "Improved Trend Following"
    description = "MA trend filter with breakout-threshold and pullback entries"

    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        p = self.params
        close = df["close"]
        short_ma = ind.sma(close, p.short_ma_period)
        long_ma = ind.sma(close, p.long_ma_period)

        trend_up = short_ma > long_ma
        above_long = close > long_ma * (1 + p.breakout_threshold)
        pullback = ind.crossed_up(close, short_ma)
        rule = (above_long & trend_up) | (trend_up & pullback)

        if p.use_rsi_filter:
            rule = rule & (ind.rsi(close, p.rsi_period) < 80)
        return rule

    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        p = self.params
        close = df["close"]
        short_ma = ind.sma(close, p.short_ma_period)
        long_ma = ind.sma(close, p.long_ma_period)

        below_long = close < long_ma * (1 - p.breakout_threshold)
        trend_down = short_ma < long_ma
        return ind.crossed_down(close, short_ma) | (below_long & trend_down)

    @classmethod
    def search_space(cls) -> SearchSpace:
        # trend_period does not drive either rule; it is kept for persisted
        # compatibility and pinned so it does not multiply the grid.
        return SearchSpace((
            ParamRange.choices("trend_period", 20),
            ParamRange.ints("short_ma_period", 5, 15),
            ParamRange.ints("long_ma_period", 15, 25),
            ParamRange.floats("breakout_threshold", 0.001, 0.009, 0.002),
            ParamRange.choices("use_rsi_filter", True, False),
            ParamRange.choices("rsi_period", 14),
        ))


class SmaCrossover(BaseStrategy):
    """Golden cross in, death cross out."""

    kind = StrategyKind.SMA_CROSSOVER
    params_type = SmaCrossoverParams
    label = "SMA Crossover"
    description = "Short SMA crossing the long SMA"

    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        close = df["close"]
        return ind.crossed_up(ind.sma(close, self.params.short_period), ind.sma(close, self.params.long_period))

    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        close = df["close"]
        return ind.crossed_down(ind.sma(close, self.params.short_period), ind.sma(close, self.params.long_period))

    @classmethod
    def search_space(cls) -> SearchSpace:
        return SearchSpace((
            ParamRange.ints("short_period", 5, 20),
            ParamRange.ints("long_period", 10, 50),
        ))


class RsiThreshold(BaseStrategy):
    """Buy oversold, sell overbought."""

    kind = StrategyKind.RSI
    params_type = RsiParams
    label = "RSI"
    description = "RSI below oversold to enter, above overbought to exit"

    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        return ind.rsi(df["close"], self.params.period) < self.params.oversold

    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        return ind.rsi(df["close"], self.params.period) > self.params.overbought

    @classmethod
    def search_space(cls) -> SearchSpace:
        return SearchSpace((
            ParamRange.ints("period", 10, 20),
            ParamRange.floats("oversold", 20.0, 40.0, 5.0),
            ParamRange.floats("overbought", 60.0, 80.0, 5.0),
        ))


class Breakout(BaseStrategy):
    """
    Channel breakout.

    Entry when the close crosses above the highest high of the previous
    `lookback` bars, exit when it crosses below their lowest low. The
    current bar is excluded from its own channel.
    """

    kind = StrategyKind.BREAKOUT
    params_type = BreakoutParams
    label = "Breakout"
    description = "Close breaking the prior high / low channel"

    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        return ind.crossed_up(df["close"], ind.highest_high(df["high"], self.params.lookback))

    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        return ind.crossed_down(df["close"], ind.lowest_low(df["low"], self.params.lookback))

    @classmethod
    def search_space(cls) -> SearchSpace:
        return SearchSpace((ParamRange.ints("lookback", 5, 50),))


class MacdCrossover(BaseStrategy):
    """MACD line crossing its EMA signal line."""

    kind = StrategyKind.MACD
    params_type = MacdParams
    label = "MACD"
    description = "MACD / signal-line crossover"

    def _lines(self, df: pd.DataFrame) -> tuple[pd.Series, pd.Series]:
        p = self.params
        line = ind.macd(df["close"], p.short_period, p.long_period)
        return line, ind.ema(line, p.signal_period)

    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        line, signal = self._lines(df)
        return ind.crossed_up(line, signal)

    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        line, signal = self._lines(df)
        return ind.crossed_down(line, signal)

    @classmethod
    def search_space(cls) -> SearchSpace:
        return SearchSpace((
            ParamRange.ints("short_period", 8, 16),
            ParamRange.ints("long_period", 20, 30),
            ParamRange.ints("signal_period", 6, 12),
        ))


class MeanReversion(BaseStrategy):
    """Buy a stretch below the SMA, sell a stretch above it."""

    kind = StrategyKind.MEAN_REVERSION
    params_type = MeanReversionParams
    label = "Mean Reversion"
    description = "Close more than threshold% away from its SMA"

    def entry_rule(self, df: pd.DataFrame) -> pd.Series:
        mean = ind.sma(df["close"], self.params.sma_period)
        return df["close"] < mean * (1 - self.params.threshold_pct / 100)

    def exit_rule(self, df: pd.DataFrame) -> pd.Series:
        mean = ind.sma(df["close"], self.params.sma_period)
        return df["close"] > mean * (1 + self.params.threshold_pct / 100)

    @classmethod
    def search_space(cls) -> SearchSpace:
        return SearchSpace((
            ParamRange.ints("sma_period", 10, 30),
            ParamRange.floats("threshold_pct", 1.0, 5.0, 0.5),
        ))


# ═══════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════


STRATEGY_REGISTRY: dict[StrategyKind, type[BaseStrategy]] = {
    cls.kind: cls
    for cls in (
        ImprovedTrendFollowing,
        SmaCrossover,
        RsiThreshold,
        Breakout,
        MacdCrossover,
        MeanReversion,
    )
}

ALL_KINDS: tuple[StrategyKind, ...] = tuple(StrategyKind)


def kind_from_name(name: str | StrategyKind) -> StrategyKind:
    """Resolve a persisted tag ("sma_crossover") or enum name ("SMA_CROSSOVER")."""
    if isinstance(name, StrategyKind):
        return name
    try:
        return StrategyKind(name)
    except ValueError:
        pass
    try:
        return StrategyKind[name.upper()]
    except KeyError:
        raise UnknownStrategyError(name) from None


def strategy_for(kind: StrategyKind | str, params: StrategyParams | None = None) -> BaseStrategy:
    """Instantiate the catalog strategy for `kind`."""
    return STRATEGY_REGISTRY[kind_from_name(kind)](params)


def params_for(kind: StrategyKind | str, values: dict[str, Any]) -> StrategyParams:
    """Build the kind's parameter dataclass from plain values (casts ints / bools)."""
    params_type = STRATEGY_REGISTRY[kind_from_name(kind)].params_type
    coerced = {}
    for f in fields(params_type):
        if f.name not in values:
            continue
        value = values[f.name]
        if f.type in ("int", int):
            value = int(value)
        elif f.type in ("float", float):
            value = float(value)
        elif f.type in ("bool", bool):
            value = bool(value)
        coerced[f.name] = value
    return params_type(**coerced)


def params_to_dict(kind: StrategyKind, params: StrategyParams) -> dict[str, Any]:
    """Tagged serialization: {"kind": tag, **fields}."""
    return {"kind": kind.value, **asdict(params)}


def params_from_dict(data: dict[str, Any]) -> tuple[StrategyKind, StrategyParams]:
    if "kind" not in data:
        raise UnknownStrategyError("missing 'kind' tag in parameter blob")
    kind = kind_from_name(data["kind"])
    values = {k: v for k, v in data.items() if k != "kind"}
    return kind, params_for(kind, values)


def get_all_strategies() -> list[BaseStrategy]:
    """Every kind with default parameters."""
    return [cls() for cls in STRATEGY_REGISTRY.values()]
