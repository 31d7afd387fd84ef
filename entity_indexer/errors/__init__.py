"""Error handling module."""
from entity_indexer.errors.exceptions import (
    IndexingError,
    LLMError,
    LLMTimeoutError,
    LLMConfigurationError,
    CatalogError,
    ProductNotFoundError,
    PersistenceError,
    MergeConflictError,
)

__all__ = [
    "IndexingError",
    "LLMError",
    "LLMTimeoutError",
    "LLMConfigurationError",
    "CatalogError",
    "ProductNotFoundError",
    "PersistenceError",
    "MergeConflictError",
]
