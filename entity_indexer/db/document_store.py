"""SQL-backed document store.

Documents live in one ``documents`` table keyed by path. A batch commit is
one transaction:

    1. insert an empty placeholder row for every path not stored yet
       (ON CONFLICT DO NOTHING)
    2. lock all touched rows FOR UPDATE, in sorted path order
    3. apply the ops in Python (``apply_op``) and write the rows back

Locking in sorted order means two batches touching the same entities
cannot deadlock, and a merge always sees the latest committed state.
"""
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import unquote

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entity_indexer.db.base import get_session_maker
from entity_indexer.db.models.document import DocumentRecord
from entity_indexer.errors.exceptions import PersistenceError
from entity_indexer.services.persistence.merge import WriteOp, apply_op
from entity_indexer.services.persistence.paths import split_path
from entity_indexer.services.persistence.store import DocumentStore

logger = structlog.get_logger(__name__)


class SqlDocumentStore(DocumentStore):
    """DocumentStore over SQLAlchemy async sessions (PostgreSQL or SQLite)."""

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker or get_session_maker()

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session_maker() as session:
                record = await session.get(DocumentRecord, path)
                if record is None or not record.data:
                    return None
                return dict(record.data)
        except SQLAlchemyError as e:
            logger.error("document_get_failed", path=path, error=str(e))
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    async def list_collection(
        self, collection: str, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        query = (
            select(DocumentRecord)
            .where(DocumentRecord.collection == collection.rstrip("/"))
            .order_by(DocumentRecord.doc_id)
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            async with self._session_maker() as session:
                result = await session.execute(query)
                documents = []
                for record in result.scalars():
                    if not record.data:
                        continue
                    document = dict(record.data)
                    document.setdefault("id", unquote(record.doc_id))
                    documents.append(document)
                return documents
        except SQLAlchemyError as e:
            logger.error("collection_list_failed", collection=collection, error=str(e))
            raise PersistenceError(f"Failed to list {collection}: {e}") from e

    @staticmethod
    async def _insert_placeholders(session: AsyncSession, paths: Sequence[str]) -> None:
        rows = []
        for path in paths:
            collection, document = split_path(path)
            rows.append({"path": path, "collection": collection, "doc_id": document, "data": {}})
        dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        await session.execute(insert(DocumentRecord).values(rows).on_conflict_do_nothing())

    async def commit(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        paths = sorted({op.path for op in ops})
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await self._insert_placeholders(session, paths)
                    result = await session.execute(
                        select(DocumentRecord)
                        .where(DocumentRecord.path.in_(paths))
                        .order_by(DocumentRecord.path)
                        .with_for_update()
                    )
                    records = {record.path: record for record in result.scalars()}
                    staged: Dict[str, Optional[Dict[str, Any]]] = {
                        path: (dict(records[path].data) if records[path].data else None)
                        for path in paths
                    }
                    for op in ops:
                        staged[op.path] = apply_op(staged[op.path], op)
                    for path in paths:
                        records[path].data = staged[path]
        except SQLAlchemyError as e:
            logger.error(
                "batch_commit_failed",
                store="sql",
                ops=len(ops),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(f"Failed to commit batch: {e}") from e
        logger.debug("batch_committed", store="sql", ops=len(ops), documents=len(paths))
