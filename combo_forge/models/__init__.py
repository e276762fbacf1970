"""SQLAlchemy ORM models for the Combo Forge result store."""

from combo_forge.models.base import Base
from combo_forge.models.tables import BestCombinationRecord

__all__ = [
    "Base",
    "BestCombinationRecord",
]
