"""
Application configuration loaded from environment variables.

Uses pydantic-settings to validate and type-check all config values
at startup. A bad window fraction or a negative risk budget fails fast
here instead of producing nonsense folds halfway through a batch.

Usage:
    from combo_forge.config import get_settings
    settings = get_settings()
    print(settings.k_folds)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from combo_forge.backtesting.strategies import StrategyKind, kind_from_name
from combo_forge.errors import UnknownStrategyError


class Settings(BaseSettings):
    """All application settings, loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── Database ──
    database_url: str = "sqlite:///combo_forge.db"

    # ── Application ──
    log_level: str = "INFO"

    # ── Data ──
    data_source: str = "csv"           # "csv" or "yahoo"
    data_dir: str = "data"             # one <SYMBOL>.csv per symbol
    max_bars: int = 1000               # lookback used for optimization
    signal_bars: int = 300             # lookback used for live signals
    yahoo_period: str = "5y"
    yahoo_interval: str = "1d"

    # ── Risk model ──
    initial_capital: float = 10_000.0
    risk_per_trade: float = 0.15       # fraction of capital at risk per trade
    stop_loss_pct: float = 0.05
    take_profit_pct: float = 0.10

    # ── Walk-forward ──
    optim_window_pct: float = 0.2
    test_window_pct: float = 0.1
    step_pct: float = 0.1
    k_folds: int = 5

    # ── Combination search ──
    nb_in: int = 2                     # max entry strategies per mix
    nb_out: int = 2                    # max exit strategies per mix
    mandatory_entry: str = ""          # kind forced into every entry subset, "" = none
    mandatory_exit: str = ""           # kind forced into every exit subset, "" = none
    anchor_best_single: bool = False   # anchor unset sides on the best single in/out pair

    # ── Batch ──
    max_workers: int = 0               # 0 = max(2, cpu count)
    insert_only: bool = False          # skip symbols that already have a result

    # ── Stability filter ──
    filter_max_drawdown: float = 0.5
    filter_min_profit_factor: float = 1.0
    filter_min_win_rate: float = 0.2
    filter_min_avg_trade_bars: int = 1
    filter_max_avg_trade_bars: int = 30
    filter_min_gain_loss_ratio: float = 0.7
    filter_max_param_count: int = 15

    @field_validator("data_source")
    @classmethod
    def validate_data_source(cls, v: str) -> str:
        v = v.lower()
        if v not in ("csv", "yahoo"):
            raise ValueError("data_source must be 'csv' or 'yahoo'")
        return v

    @field_validator("max_bars", "signal_bars")
    @classmethod
    def validate_bars(cls, v: int) -> int:
        if v < 2:
            raise ValueError("bar lookbacks must be at least 2")
        return v

    @field_validator("initial_capital")
    @classmethod
    def validate_capital(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("initial_capital must be positive")
        return v

    @field_validator(
        "risk_per_trade", "stop_loss_pct", "optim_window_pct", "test_window_pct", "step_pct",
    )
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("fractions must be strictly between 0 and 1")
        return v

    @field_validator("take_profit_pct")
    @classmethod
    def validate_take_profit(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("take_profit_pct must be positive")
        return v

    @field_validator("k_folds", "nb_in", "nb_out")
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        if v < 1:
            raise ValueError("k_folds, nb_in and nb_out must be >= 1")
        return v

    @field_validator("mandatory_entry", "mandatory_exit")
    @classmethod
    def validate_strategy_kind(cls, v: str) -> str:
        if not v:
            return ""
        try:
            return kind_from_name(v).value
        except UnknownStrategyError:
            raise ValueError(f"unknown strategy kind: {v}") from None

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_workers must be >= 0 (0 = auto)")
        return v

    @property
    def mandatory_kinds(self) -> tuple[StrategyKind | None, StrategyKind | None]:
        """(entry, exit) kinds forced into every subset, None where unset."""
        return (
            kind_from_name(self.mandatory_entry) if self.mandatory_entry else None,
            kind_from_name(self.mandatory_exit) if self.mandatory_exit else None,
        )

    @property
    def resolved_workers(self) -> int | None:
        """Explicit worker count, or None to let the orchestrator size the pool."""
        return self.max_workers or None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache so the .env file is only read once.
    """
    return Settings()
