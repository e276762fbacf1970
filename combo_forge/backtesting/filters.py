"""
Stability gate and swing-trade score.

Both are applied after the fact to RiskResults produced by the
simulator. Neither feeds back into the simulation itself:
- is_stable_and_simple: rejects results that are too risky, too thin
  or too complex to trust (drives the filtered-out flag)
- swing_trade_score: single composite number used for ranking reports
"""

from __future__ import annotations

from dataclasses import dataclass

from combo_forge.backtesting.simulator import RiskResult


@dataclass
class StrategyFilterConfig:
    """Thresholds of the stability gate."""
    max_drawdown: float = 0.5
    min_profit_factor: float = 1.0
    min_win_rate: float = 0.2
    min_avg_trade_bars: int = 1
    max_avg_trade_bars: int = 30
    min_gain_loss_ratio: float = 0.7      # |best trade| / |worst trade|
    max_param_count: int = 15


def is_stable_and_simple(
    result: RiskResult,
    config: StrategyFilterConfig | None = None,
    param_count: int | None = None,
) -> bool:
    if config is None:
        config = StrategyFilterConfig()

    if result.max_drawdown > config.max_drawdown:
        return False
    if result.profit_factor < config.min_profit_factor:
        return False
    if result.win_rate < config.min_win_rate:
        return False
    if not config.min_avg_trade_bars <= result.avg_trade_bars <= config.max_avg_trade_bars:
        return False
    if result.max_trade_loss != 0:
        gain_loss_ratio = abs(result.max_trade_gain) / abs(result.max_trade_loss)
        if gain_loss_ratio < config.min_gain_loss_ratio:
            return False
    if param_count is not None and param_count > config.max_param_count:
        return False
    return True


# Swing-trade score weights
W_RENDEMENT = 2.0
W_WIN_RATE = 1.5
W_PROFIT_FACTOR = 1.0
W_DRAWDOWN = 2.0
W_AVG_PNL = 1.0
PROFIT_FACTOR_CAP = 10.0


def swing_trade_score(result: RiskResult) -> float:
    """
    Composite ranking score.

    Rewards return, hit rate, profit factor (capped at 10 so a single
    lossless run does not dominate) and average P&L; penalizes drawdown.
    """
    if result.is_sentinel():
        return float("-inf")
    return (
        W_RENDEMENT * result.rendement
        + W_WIN_RATE * result.win_rate
        + W_PROFIT_FACTOR * min(result.profit_factor, PROFIT_FACTOR_CAP)
        - W_DRAWDOWN * result.max_drawdown
        + W_AVG_PNL * result.avg_pnl
    )


def annotate(
    result: RiskResult,
    config: StrategyFilterConfig | None = None,
    param_count: int | None = None,
    overfit: bool = False,
) -> RiskResult:
    """Set the swing score and filtered-out flag in place. Returns `result`."""
    result.swing_trade_score = swing_trade_score(result)
    result.filtered_out = overfit or not is_stable_and_simple(result, config, param_count)
    return result
