"""Tests for the SQL result store (file-backed SQLite per test)."""

import pytest
from sqlalchemy import select

from combo_forge.backtesting.combinations import find_best_combination
from combo_forge.backtesting.filters import swing_trade_score
from combo_forge.backtesting.strategies import MacdParams, RsiParams, StrategyKind
from combo_forge.errors import UnknownStrategyError
from combo_forge.models.tables import BestCombinationRecord
from combo_forge.services.result_store import ResultStore
from combo_forge.utils import db
from combo_forge.utils.db import close_engine, create_tables, get_session


class TestUpsert:

    def test_insert_then_update(self, store, combo_factory):
        assert not store.exists("AAA")
        assert store.upsert("AAA", combo_factory(rendement=0.2)) is True
        assert store.exists("AAA")
        first = store.load_latest("AAA")

        assert store.upsert("AAA", combo_factory(rendement=0.5)) is False
        second = store.load_latest("AAA")
        assert second.result.rendement == pytest.approx(0.5)
        assert second.created_at == first.created_at

        with get_session(store.engine) as session:
            rows = session.execute(select(BestCombinationRecord)).scalars().all()
        assert len(rows) == 1

    def test_round_trip(self, store, combo_factory):
        combo = combo_factory(
            "BBB",
            entry_params={StrategyKind.RSI: RsiParams(period=12, oversold=25.0, overbought=75.0),
                          StrategyKind.MACD: MacdParams(short_period=8, long_period=30, signal_period=6)},
        )
        store.upsert("BBB", combo)
        loaded = store.load_latest("BBB")

        assert loaded.symbol == "BBB"
        assert loaded.entry_kinds == (StrategyKind.RSI, StrategyKind.MACD)
        assert loaded.entry_params == combo.entry_params
        assert loaded.exit_params == combo.exit_params
        assert loaded.result == combo.result
        assert loaded.check == combo.check
        assert loaded.rendement_score == pytest.approx(combo.rendement_score)
        assert loaded.context == combo.context
        assert loaded.fold_count == 5
        assert loaded.created_at is not None

    def test_missing_symbol(self, store):
        assert store.load_latest("NOPE") is None
        assert not store.exists("NOPE")

    def test_unknown_kind_tag(self, store, combo_factory):
        store.upsert("AAA", combo_factory())
        with get_session(store.engine) as session:
            record = session.execute(select(BestCombinationRecord)).scalar_one()
            record.entry_strategy_names = ["ichimoku"]
            session.commit()
        with pytest.raises(UnknownStrategyError):
            store.load_latest("AAA")

    def test_create_tables_idempotent(self, engine):
        create_tables(engine)
        create_tables(engine)
        ResultStore(engine)


class TestBestPerformers:

    @pytest.fixture
    def filled(self, store, combo_factory):
        store.upsert("LOW", combo_factory("LOW", rendement=0.05, check=0.05))
        store.upsert("MID", combo_factory("MID", rendement=0.3, check=0.1, filtered_out=True))
        store.upsert("TOP", combo_factory("TOP", rendement=0.4, check=0.3))
        # degenerate rows
        store.upsert("NOPF", combo_factory("NOPF", rendement=0.9, check=0.9, profit_factor=0.0))
        store.upsert("NODD", combo_factory("NODD", rendement=0.9, check=0.9, max_drawdown=0.0))
        store.upsert("ALLWIN", combo_factory("ALLWIN", rendement=0.9, check=0.9, win_rate=1.0))
        return store

    def test_sorted_by_score_without_degenerate_rows(self, filled):
        assert [c.symbol for c in filled.best_performers()] == ["TOP", "MID", "LOW"]

    def test_filtered_only(self, filled):
        assert [c.symbol for c in filled.best_performers(filtered=True)] == ["TOP", "LOW"]

    def test_limit_and_sort(self, filled):
        assert [c.symbol for c in filled.best_performers(limit=1, sort="rendement")] == ["TOP"]

    def test_sort_column_allow_list(self, filled):
        with pytest.raises(ValueError):
            filled.best_performers(sort="symbol; drop table best_combination_results")


def test_refresh_swing_scores(store, combo_factory):
    combo = combo_factory()
    assert combo.result.swing_trade_score == 0.0
    store.upsert("AAA", combo)

    assert store.refresh_swing_scores() == 1
    loaded = store.load_latest("AAA")
    assert loaded.result.swing_trade_score == pytest.approx(swing_trade_score(combo.result))
    assert loaded.check.swing_trade_score == pytest.approx(swing_trade_score(combo.check))


def test_refresh_keeps_search_scores(store, oscillating, search_config):
    combo = find_best_combination(oscillating, search_config)
    store.upsert("WAVE", combo)

    store.refresh_swing_scores()
    loaded = store.load_latest("WAVE")
    assert loaded.result.swing_trade_score == pytest.approx(combo.result.swing_trade_score)
    assert loaded.check.swing_trade_score == pytest.approx(combo.check.swing_trade_score)


def test_close_engine_disposes_process_engine(monkeypatch, engine):
    monkeypatch.setattr(db, "_engine", engine)
    close_engine()
    assert db._engine is None
    close_engine()
