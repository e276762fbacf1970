"""
Database connection management.

Creates a synchronous SQLAlchemy engine and session factory. The batch
orchestrator persists from worker threads, so each call to get_session()
hands out its own session; the engine's pool is what is shared.

SQLite is the default backend. For SQLite the pysqlite thread check is
disabled (sessions never cross threads, but pooled connections do).

Usage:
    from combo_forge.utils.db import get_engine, get_session

    with get_session(get_engine()) as session:
        session.execute(select(BestCombinationRecord))
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from combo_forge.config import get_settings

_engine: Engine | None = None


def make_engine(url: str, echo: bool = False) -> Engine:
    """Build an engine for `url` with backend-appropriate options."""
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_size=5, max_overflow=10, pool_pre_ping=True)


def get_engine() -> Engine:
    """Process-wide engine for the configured database_url, created on first use."""
    global _engine
    if _engine is None:
        _engine = make_engine(get_settings().database_url)
    return _engine


@contextmanager
def get_session(engine: Engine | None = None) -> Iterator[Session]:
    """
    Session with automatic cleanup.

    Rolls back and re-raises on any exception; the caller commits.
    """
    factory = sessionmaker(engine or get_engine(), expire_on_commit=False)
    session = factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create all tables if they don't exist. Safe to call multiple times."""
    from combo_forge.models.base import Base

    # Import tables so they're registered with Base.metadata
    import combo_forge.models.tables  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def close_engine() -> None:
    """Dispose of the process-wide engine's connection pool."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
