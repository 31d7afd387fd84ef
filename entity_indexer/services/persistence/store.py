"""Document store abstraction and an in-memory implementation.

The pipeline needs three things from the catalog store: read one document,
list a collection, and commit a batch of writes atomically.
``InMemoryDocumentStore`` backs tests and dry runs; ``SqlDocumentStore``
(``entity_indexer.db.document_store``) backs real runs.
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import unquote

import structlog

from entity_indexer.services.persistence.merge import WriteOp, apply_op
from entity_indexer.services.persistence.paths import doc_id, split_path

logger = structlog.get_logger(__name__)


class DocumentStore(ABC):
    """Path-addressed JSON document store."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the document at ``path`` or None."""
        pass

    @abstractmethod
    async def list_collection(
        self, collection: str, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Documents directly under ``collection``, ordered by document id.

        Each returned dict carries the document id under ``"id"`` when the
        stored document has none.
        """
        pass

    @abstractmethod
    async def commit(self, ops: Sequence[WriteOp]) -> None:
        """Apply every op or none of them.

        Raises:
            MergeConflictError: If a merge cannot be applied to stored data
            PersistenceError: If the store rejects the batch
        """
        pass

    async def close(self) -> None:
        return None


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store. A batch is applied to a staged copy, then swapped in."""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self.documents: Dict[str, Dict[str, Any]] = copy.deepcopy(documents or {})
        self.commits = 0
        self._lock = asyncio.Lock()

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        document = self.documents.get(path)
        return copy.deepcopy(document) if document is not None else None

    async def list_collection(
        self, collection: str, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        prefix = collection.rstrip("/") + "/"
        found = []
        for path in sorted(self.documents):
            if not path.startswith(prefix) or "/" in path[len(prefix):]:
                continue
            document = copy.deepcopy(self.documents[path])
            document.setdefault("id", unquote(split_path(path)[1]))
            found.append(document)
            if limit is not None and len(found) >= limit:
                break
        return found

    async def commit(self, ops: Sequence[WriteOp]) -> None:
        async with self._lock:
            staged = dict(self.documents)
            for op in ops:
                staged[op.path] = apply_op(staged.get(op.path), op)
            self.documents = staged
            self.commits += 1
        logger.debug("batch_committed", store="memory", ops=len(ops))

    def put(self, path: str, document: Dict[str, Any]) -> None:
        """Seed a document directly (fixtures, catalog imports)."""
        self.documents[path] = copy.deepcopy(document)

    def add_product(self, collection: str, product: Dict[str, Any]) -> None:
        self.put(f"{collection}/{doc_id(product['id'])}", product)
