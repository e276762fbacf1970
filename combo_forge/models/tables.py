"""
Database table definitions.

One table: the best entry/exit strategy mix per symbol, as produced by the
combination search. The row is created on the first search for a symbol
and updated in place by later runs (created_at is preserved).

Flat metric columns hold the aggregated walk-forward result so reports can
sort and filter in SQL; the held-out check result and the per-kind
parameters are JSON blobs (JSONB on PostgreSQL).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from combo_forge.models.base import Base

JsonBlob = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BestCombinationRecord(Base):
    """
    Winning strategy mix for one symbol.

    entry_params / exit_params are lists of tagged parameter blobs,
    e.g. [{"kind": "sma_crossover", "short_period": 5, "long_period": 20}].
    """

    __tablename__ = "best_combination_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    # ── Mix ──
    entry_strategy_names: Mapped[list] = mapped_column(JsonBlob, nullable=False)
    exit_strategy_names: Mapped[list] = mapped_column(JsonBlob, nullable=False)
    entry_params: Mapped[list] = mapped_column(JsonBlob, nullable=False)
    exit_params: Mapped[list] = mapped_column(JsonBlob, nullable=False)

    # ── Aggregated walk-forward result ──
    rendement: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown: Mapped[float] = mapped_column(Float, default=0.0)
    trade_count: Mapped[int] = mapped_column(Integer, default=0)
    win_rate: Mapped[float] = mapped_column(Float, default=0.0)
    avg_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    profit_factor: Mapped[float] = mapped_column(Float, default=0.0)
    avg_trade_bars: Mapped[float] = mapped_column(Float, default=0.0)
    max_trade_gain: Mapped[float] = mapped_column(Float, default=0.0)
    max_trade_loss: Mapped[float] = mapped_column(Float, default=0.0)
    score_swing_trade: Mapped[float] = mapped_column(Float, default=0.0)
    filtered_out: Mapped[bool] = mapped_column(Boolean, default=False)

    # ── Held-out check ──
    check_result: Mapped[dict] = mapped_column(JsonBlob, nullable=False)
    rendement_sum: Mapped[float] = mapped_column(Float, default=0.0)
    rendement_diff: Mapped[float] = mapped_column(Float, default=0.0)
    rendement_score: Mapped[float] = mapped_column(Float, default=0.0)

    # ── Run context ──
    initial_capital: Mapped[float] = mapped_column(Float, nullable=False)
    risk_per_trade: Mapped[float] = mapped_column(Float, nullable=False)
    stop_loss_pct: Mapped[float] = mapped_column(Float, nullable=False)
    take_profit_pct: Mapped[float] = mapped_column(Float, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    fold_count: Mapped[int] = mapped_column(Integer, default=0)
    aggregate_overfit_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    combinations_tested: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_best_combo_score", "rendement_score"),
        Index("idx_best_combo_filtered", "filtered_out", "rendement_score"),
    )
