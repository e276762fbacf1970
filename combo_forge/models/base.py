"""
Declarative base for the result store.

Constraint and index names follow a fixed convention so the schema is
identical whether it was created on SQLite (tests, local runs) or on
PostgreSQL.
"""

from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
