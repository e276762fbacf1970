"""
Trade simulator.

Runs a composite entry / exit signal over one Series, bar by bar, with a
fixed-fractional risk model:

    size   = capital * risk_per_trade / (entry_price * stop_loss_pct)
    stop   = entry_price * (1 - stop_loss_pct)
    target = entry_price * (1 + take_profit_pct)

Two states, Flat and Open. While Open, each subsequent bar is checked in
priority order:
1. low <= stop      -> close at the stop (loss)
2. high >= target   -> close at the target (gain)
3. exit signal      -> close at the bar's close
A position still open on the last bar is marked to market at its close.

Realized P&L compounds into capital trade by trade. The RiskResult is a
pure function of the resulting trade list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from combo_forge.backtesting.series import Series
from combo_forge.backtesting.strategies import Signal

log = logging.getLogger("forge.simulator")


@dataclass
class SimulationConfig:
    """Risk model for a single simulation pass."""
    initial_capital: float = 10_000.0
    risk_per_trade: float = 0.15        # Fraction of capital lost if the stop is hit
    stop_loss_pct: float = 0.05
    take_profit_pct: float = 0.10


@dataclass
class Trade:
    """A completed trade."""
    entry_index: int
    entry_price: float
    stop_price: float
    target_price: float
    exit_index: int
    exit_price: float
    size: float                # Units held
    pnl: float                 # Realized P&L in currency
    bars_held: int
    exit_reason: str           # "stop_loss", "take_profit", "signal", "end_of_data"


@dataclass
class RiskResult:
    """Aggregate performance / risk metrics of one trade list."""
    rendement: float = 0.0               # final capital / initial capital - 1
    max_drawdown: float = 0.0            # fraction of the running peak
    trade_count: int = 0
    win_rate: float = 0.0                # fraction of trades with pnl > 0
    avg_pnl: float = 0.0
    profit_factor: float = 0.0
    avg_trade_bars: float = 0.0
    max_trade_gain: float = 0.0
    max_trade_loss: float = 0.0
    # Annotated post hoc by filters.annotate
    swing_trade_score: float = 0.0
    filtered_out: bool = False

    @classmethod
    def sentinel(cls) -> RiskResult:
        """Result of an evaluation that never ran. Loses every comparison."""
        return cls(rendement=float("-inf"), filtered_out=True)

    def is_sentinel(self) -> bool:
        return self.rendement == float("-inf")

    def to_dict(self) -> dict:
        return {
            "rendement": self.rendement,
            "max_drawdown": self.max_drawdown,
            "trade_count": self.trade_count,
            "win_rate": self.win_rate,
            "avg_pnl": self.avg_pnl,
            "profit_factor": self.profit_factor,
            "avg_trade_bars": self.avg_trade_bars,
            "max_trade_gain": self.max_trade_gain,
            "max_trade_loss": self.max_trade_loss,
            "swing_trade_score": self.swing_trade_score,
            "filtered_out": self.filtered_out,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RiskResult:
        known = cls().to_dict().keys()
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class BacktestResult:
    """Full result of one simulation pass."""
    trades: list[Trade]
    equity_curve: np.ndarray             # capital after each closed trade, starting at initial
    risk: RiskResult
    config: SimulationConfig = field(default_factory=SimulationConfig)


def simulate(
    series: Series,
    entry_signal: Signal,
    exit_signal: Signal,
    config: SimulationConfig | None = None,
) -> BacktestResult:
    """Run the entry / exit signals over `series` and score the trades."""
    if config is None:
        config = SimulationConfig()
    n = series.bar_count
    if len(entry_signal) != n or len(exit_signal) != n:
        raise ValueError(
            f"signal length ({len(entry_signal)}, {len(exit_signal)}) does not match series length {n}"
        )

    trades = _run_trades(series, entry_signal, exit_signal, config)
    equity = _equity_curve(trades, config.initial_capital)
    risk = compute_risk_result(trades, config, equity)
    return BacktestResult(trades=trades, equity_curve=equity, risk=risk, config=config)


def _run_trades(
    series: Series, entry_signal: Signal, exit_signal: Signal, config: SimulationConfig,
) -> list[Trade]:
    highs = series.high
    lows = series.low
    closes = series.close
    entries = entry_signal.values
    exits = exit_signal.values
    n = series.bar_count
    last = n - 1

    capital = config.initial_capital
    trades: list[Trade] = []
    i = 0

    # ── Flat: scan for an entry (never on the final bar) ──
    while i < last:
        if not entries[i]:
            i += 1
            continue
        if capital <= 0:
            log.debug("Capital exhausted at bar %d, no further entries", i)
            break

        entry_price = float(closes[i])
        if entry_price <= 0:
            i += 1
            continue
        size = (capital * config.risk_per_trade) / (entry_price * config.stop_loss_pct)
        stop_price = entry_price * (1 - config.stop_loss_pct)
        target_price = entry_price * (1 + config.take_profit_pct)

        # ── Open: first bar after entry that hits stop, target or exit ──
        exit_index = last
        exit_price = float(closes[last])
        exit_reason = "end_of_data"
        for j in range(i + 1, n):
            if lows[j] <= stop_price:
                exit_index, exit_price, exit_reason = j, stop_price, "stop_loss"
                break
            if highs[j] >= target_price:
                exit_index, exit_price, exit_reason = j, target_price, "take_profit"
                break
            if exits[j]:
                exit_index, exit_price, exit_reason = j, float(closes[j]), "signal"
                break

        pnl = (exit_price - entry_price) * size
        capital += pnl
        trades.append(Trade(
            entry_index=i,
            entry_price=entry_price,
            stop_price=stop_price,
            target_price=target_price,
            exit_index=exit_index,
            exit_price=exit_price,
            size=size,
            pnl=pnl,
            bars_held=exit_index - i,
            exit_reason=exit_reason,
        ))
        i = exit_index + 1

    return trades


def _equity_curve(trades: list[Trade], initial_capital: float) -> np.ndarray:
    pnls = np.array([t.pnl for t in trades], dtype=np.float64)
    return initial_capital + np.concatenate(([0.0], np.cumsum(pnls)))


def compute_max_drawdown(equity: np.ndarray) -> float:
    """Largest peak-to-trough decline as a fraction of the running peak."""
    if len(equity) == 0:
        return 0.0
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return float(max(0.0, drawdowns.max()))


def compute_risk_result(
    trades: list[Trade],
    config: SimulationConfig | None = None,
    equity: np.ndarray | None = None,
) -> RiskResult:
    """
    Aggregate a trade list into a RiskResult.

    Zero trades give an all-zero result. Profit factor falls back to the
    gross gain when there are no losing trades (0 when there are no
    winners either).
    """
    if config is None:
        config = SimulationConfig()
    if not trades:
        return RiskResult()
    if equity is None:
        equity = _equity_curve(trades, config.initial_capital)

    pnls = np.array([t.pnl for t in trades], dtype=np.float64)
    bars = np.array([t.bars_held for t in trades], dtype=np.float64)

    gross_profit = float(pnls[pnls > 0].sum())
    gross_loss = float(abs(pnls[pnls < 0].sum()))
    profit_factor = gross_profit / gross_loss if gross_loss > 0 else gross_profit

    return RiskResult(
        rendement=float(equity[-1] / config.initial_capital - 1.0),
        max_drawdown=compute_max_drawdown(equity),
        trade_count=len(trades),
        win_rate=float((pnls > 0).mean()),
        avg_pnl=float(pnls.mean()),
        profit_factor=profit_factor,
        avg_trade_bars=float(bars.mean()),
        max_trade_gain=float(pnls.max()),
        max_trade_loss=float(pnls.min()),
    )
