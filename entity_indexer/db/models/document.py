"""Document ORM model: one row per catalog-store document path."""
from sqlalchemy import Index, JSON, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from typing import Any, Dict

from entity_indexer.db.base import Base, TimestampMixin


class DocumentRecord(Base, TimestampMixin):
    """Path-keyed JSON document.

    ``path`` is the full document path (e.g. ``entities/acme/vitamin-c``);
    ``collection`` and ``doc_id`` are its two halves, stored so a collection
    can be listed in id order from one index.
    """

    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_collection", "collection", "doc_id"),
    )

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    collection: Mapped[str] = mapped_column(String(384), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(256), nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord(path={self.path!r})>"
