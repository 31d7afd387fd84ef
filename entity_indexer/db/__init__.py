"""Database module."""
from entity_indexer.db.base import (
    Base,
    TimestampMixin,
    get_engine,
    get_session_maker,
    dispose_engine,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "get_engine",
    "get_session_maker",
    "dispose_engine",
]
