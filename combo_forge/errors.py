"""
Exception types raised by the engine.

Everything derives from ForgeError so callers can catch the whole family,
and most types also derive from the matching builtin (ValueError,
IndexError, ...) so generic handlers keep working.
"""

from __future__ import annotations


class ForgeError(Exception):
    """Base class for all engine errors."""


class InvalidSeriesError(ForgeError, ValueError):
    """Bars are unordered, duplicated or missing required price data."""


class OutOfRangeError(ForgeError, IndexError):
    """A bar index or sub-range falls outside the series."""


class InsufficientDataError(ForgeError):
    """Not enough bars for a single walk-forward fold in any combination."""


class SeriesNotFoundError(ForgeError, LookupError):
    """The series source has no history for the requested symbol."""


class UnknownStrategyError(ForgeError, KeyError):
    """A persisted strategy name does not map to a known strategy kind."""


class BatchAlreadyRunningError(ForgeError, RuntimeError):
    """A batch run was requested while another one is still in flight."""
