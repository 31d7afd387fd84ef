"""Database models for the entity index."""
from entity_indexer.db.models.document import DocumentRecord

__all__ = [
    "DocumentRecord",
]
