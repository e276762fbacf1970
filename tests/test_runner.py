"""Tests for the CLI entry point (modes that need no market data)."""

import pytest

from combo_forge.backtesting.strategies import StrategyKind
from combo_forge.runner import format_strategy_table, main


def test_no_mode_prints_help(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out


def test_strategy_catalog(capsys):
    assert main(["--strategies"]) == 0
    out = capsys.readouterr().out
    for kind in StrategyKind:
        assert kind.value in out


def test_catalog_lists_search_ranges():
    table = format_strategy_table()
    assert "short_period 5-19" in table
    assert "lookback 5-49" in table
    assert "trend_period 20," in table


def test_unknown_mandatory_kind_rejected():
    with pytest.raises(SystemExit):
        main(["--strategies", "--mandatory-in", "ichimoku"])
