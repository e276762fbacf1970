"""Tests for settings validation and the settings → search config bridge."""

import pytest
from pydantic import ValidationError

from combo_forge.backtesting.combinations import SearchConfig
from combo_forge.backtesting.strategies import StrategyKind
from combo_forge.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.k_folds == 5
    assert settings.optim_window_pct == 0.2
    assert settings.risk_per_trade == 0.15
    assert settings.resolved_workers is None


@pytest.mark.parametrize("field,value", [
    ("k_folds", 0),
    ("nb_in", 0),
    ("optim_window_pct", 1.5),
    ("stop_loss_pct", 0.0),
    ("initial_capital", -1.0),
    ("take_profit_pct", 0.0),
    ("max_workers", -2),
    ("max_bars", 1),
    ("data_source", "bloomberg"),
    ("mandatory_entry", "ichimoku"),
])
def test_invalid_values_fail_fast(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_data_source_normalized():
    assert Settings(_env_file=None, data_source="YAHOO").data_source == "yahoo"


def test_environment_override(monkeypatch):
    monkeypatch.setenv("K_FOLDS", "3")
    monkeypatch.setenv("INSERT_ONLY", "true")
    settings = Settings(_env_file=None)
    assert settings.k_folds == 3
    assert settings.insert_only is True


def test_search_config_from_settings():
    settings = Settings(_env_file=None, nb_in=1, nb_out=3, k_folds=4, stop_loss_pct=0.08,
                        filter_max_drawdown=0.3, max_workers=6)
    config = SearchConfig.from_settings(settings)
    assert (config.nb_in, config.nb_out) == (1, 3)
    assert config.walk_forward.k_folds == 4
    assert config.simulation.stop_loss_pct == 0.08
    assert config.filters.max_drawdown == 0.3
    assert settings.resolved_workers == 6


def test_mandatory_kinds():
    settings = Settings(_env_file=None, mandatory_entry="SMA_CROSSOVER", mandatory_exit="rsi")
    assert settings.mandatory_entry == "sma_crossover"
    assert settings.mandatory_kinds == (StrategyKind.SMA_CROSSOVER, StrategyKind.RSI)
    assert Settings(_env_file=None).mandatory_kinds == (None, None)
    assert Settings(_env_file=None).anchor_best_single is False
