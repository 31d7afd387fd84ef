"""Persistence: merge policy, document stores and the batched writer."""
from entity_indexer.services.persistence.merge import (
    FieldStrategy,
    MergePolicy,
    ENTITY_MERGE_POLICY,
    OVERWRITE_POLICY,
    WriteOp,
    merge_document,
    apply_op,
)
from entity_indexer.services.persistence.store import DocumentStore, InMemoryDocumentStore
from entity_indexer.services.persistence.writer import (
    BatchWriter,
    PersistenceWriter,
    collapse_entities,
)

__all__ = [
    "FieldStrategy",
    "MergePolicy",
    "ENTITY_MERGE_POLICY",
    "OVERWRITE_POLICY",
    "WriteOp",
    "merge_document",
    "apply_op",
    "DocumentStore",
    "InMemoryDocumentStore",
    "BatchWriter",
    "PersistenceWriter",
    "collapse_entities",
]
