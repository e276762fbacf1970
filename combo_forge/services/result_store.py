"""
Persistence of best combinations, one row per symbol.

Maps ComboResult <-> BestCombinationRecord. Every public method opens its
own short session, so one ResultStore can be shared by all orchestrator
workers. Database errors are rolled back and re-raised; retrying is the
caller's business.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from combo_forge.backtesting.combinations import ComboResult, OptimContext
from combo_forge.backtesting.filters import swing_trade_score
from combo_forge.backtesting.simulator import RiskResult
from combo_forge.backtesting.strategies import kind_from_name, params_from_dict, params_to_dict
from combo_forge.models.tables import BestCombinationRecord
from combo_forge.utils.db import create_tables, get_engine, get_session

log = logging.getLogger("forge.store")

# Columns best_performers() may sort on
SORTABLE_COLUMNS = (
    "rendement_score",
    "rendement",
    "rendement_sum",
    "score_swing_trade",
    "profit_factor",
    "win_rate",
    "avg_pnl",
    "trade_count",
)


def _result_columns(result: RiskResult) -> dict:
    return {
        "rendement": result.rendement,
        "max_drawdown": result.max_drawdown,
        "trade_count": result.trade_count,
        "win_rate": result.win_rate,
        "avg_pnl": result.avg_pnl,
        "profit_factor": result.profit_factor,
        "avg_trade_bars": result.avg_trade_bars,
        "max_trade_gain": result.max_trade_gain,
        "max_trade_loss": result.max_trade_loss,
        "score_swing_trade": result.swing_trade_score,
        "filtered_out": result.filtered_out,
    }


def _record_values(combo: ComboResult) -> dict:
    ctx = combo.context
    return {
        "entry_strategy_names": [k.value for k in combo.entry_kinds],
        "exit_strategy_names": [k.value for k in combo.exit_kinds],
        "entry_params": [params_to_dict(k, p) for k, p in combo.entry_params.items()],
        "exit_params": [params_to_dict(k, p) for k, p in combo.exit_params.items()],
        **_result_columns(combo.result),
        "check_result": combo.check.to_dict(),
        "rendement_sum": combo.rendement_sum,
        "rendement_diff": combo.rendement_diff,
        "rendement_score": combo.rendement_score,
        "initial_capital": ctx.initial_capital,
        "risk_per_trade": ctx.risk_per_trade,
        "stop_loss_pct": ctx.stop_loss_pct,
        "take_profit_pct": ctx.take_profit_pct,
        "sample_count": ctx.sample_count,
        "fold_count": combo.fold_count,
        "aggregate_overfit_ratio": combo.aggregate_overfit_ratio,
        "combinations_tested": combo.combinations_tested,
    }


def record_to_combo(record: BestCombinationRecord) -> ComboResult:
    """Rebuild a ComboResult from a stored row. Unknown kind tags raise UnknownStrategyError."""
    return ComboResult(
        symbol=record.symbol,
        entry_kinds=tuple(kind_from_name(name) for name in record.entry_strategy_names),
        exit_kinds=tuple(kind_from_name(name) for name in record.exit_strategy_names),
        entry_params=dict(params_from_dict(blob) for blob in record.entry_params),
        exit_params=dict(params_from_dict(blob) for blob in record.exit_params),
        result=RiskResult(
            rendement=record.rendement,
            max_drawdown=record.max_drawdown,
            trade_count=record.trade_count,
            win_rate=record.win_rate,
            avg_pnl=record.avg_pnl,
            profit_factor=record.profit_factor,
            avg_trade_bars=record.avg_trade_bars,
            max_trade_gain=record.max_trade_gain,
            max_trade_loss=record.max_trade_loss,
            swing_trade_score=record.score_swing_trade,
            filtered_out=record.filtered_out,
        ),
        check=RiskResult.from_dict(record.check_result or {}),
        rendement_sum=record.rendement_sum,
        rendement_diff=record.rendement_diff,
        rendement_score=record.rendement_score,
        context=OptimContext(
            initial_capital=record.initial_capital,
            risk_per_trade=record.risk_per_trade,
            stop_loss_pct=record.stop_loss_pct,
            take_profit_pct=record.take_profit_pct,
            sample_count=record.sample_count,
        ),
        fold_count=record.fold_count,
        aggregate_overfit_ratio=record.aggregate_overfit_ratio,
        combinations_tested=record.combinations_tested,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class ResultStore:
    """SQL-backed store of the best combination per symbol."""

    def __init__(self, engine: Engine | None = None, create: bool = True):
        self.engine = engine or get_engine()
        if create:
            create_tables(self.engine)

    def exists(self, symbol: str) -> bool:
        with get_session(self.engine) as session:
            found = session.execute(
                select(BestCombinationRecord.id).where(BestCombinationRecord.symbol == symbol)
            ).first()
            return found is not None

    def upsert(self, symbol: str, combo: ComboResult) -> bool:
        """
        Insert the symbol's row, or overwrite it in place.

        Returns True when a new row was created. created_at survives updates.
        """
        values = _record_values(combo)
        with get_session(self.engine) as session:
            record = session.execute(
                select(BestCombinationRecord).where(BestCombinationRecord.symbol == symbol)
            ).scalar_one_or_none()
            created = record is None
            if created:
                record = BestCombinationRecord(symbol=symbol, **values)
                session.add(record)
            else:
                for name, value in values.items():
                    setattr(record, name, value)
            session.commit()

        log.info(
            "%s: %s best combination (rendement=%.4f score=%.4f)",
            symbol, "inserted" if created else "updated", combo.result.rendement, combo.rendement_score,
        )
        return created

    def load_latest(self, symbol: str) -> ComboResult | None:
        with get_session(self.engine) as session:
            record = session.execute(
                select(BestCombinationRecord).where(BestCombinationRecord.symbol == symbol)
            ).scalar_one_or_none()
            return record_to_combo(record) if record is not None else None

    def best_performers(
        self,
        limit: int | None = None,
        sort: str = "rendement_score",
        filtered: bool = False,
    ) -> list[ComboResult]:
        """
        Stored results, best first.

        Degenerate rows (no profit factor, no drawdown or a 100% win rate,
        typically one lucky trade) are left out. With filtered=True only
        rows that passed the stability filter are returned.
        """
        if sort not in SORTABLE_COLUMNS:
            raise ValueError(f"cannot sort by {sort!r}; choose one of {', '.join(SORTABLE_COLUMNS)}")

        table = BestCombinationRecord
        query = select(table).where(
            table.profit_factor != 0,
            table.max_drawdown != 0,
            table.win_rate < 1,
        )
        if filtered:
            query = query.where(table.filtered_out.is_(False))
        query = query.order_by(getattr(table, sort).desc(), table.symbol)
        if limit is not None:
            query = query.limit(limit)

        with get_session(self.engine) as session:
            return [record_to_combo(r) for r in session.execute(query).scalars()]

    def refresh_swing_scores(self) -> int:
        """Recompute the stored swing-trade score of every result and check. Returns rows touched."""
        with get_session(self.engine) as session:
            records = session.execute(select(BestCombinationRecord)).scalars().all()
            for record in records:
                result = record_to_combo(record).result
                record.score_swing_trade = swing_trade_score(result)
                check = RiskResult.from_dict(record.check_result or {})
                check.swing_trade_score = swing_trade_score(check)
                record.check_result = check.to_dict()
            session.commit()

        log.info("Refreshed swing-trade scores on %d rows", len(records))
        return len(records)
