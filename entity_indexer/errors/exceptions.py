"""Custom exception hierarchy for entity indexing errors."""
from typing import Optional


class IndexingError(Exception):
    """Base exception for all entity indexing errors."""

    def __init__(self, message: str, *args, **kwargs):
        """Initialize error with message."""
        self.message = message
        super().__init__(message, *args, **kwargs)


class LLMError(IndexingError):
    """Raised when the LLM service fails or returns an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class LLMTimeoutError(LLMError):
    """Raised when an LLM call exceeds its time bound."""
    pass


class LLMConfigurationError(LLMError):
    """Raised when an LLM backend cannot be constructed from settings."""
    pass


class CatalogError(IndexingError):
    """Raised when catalog product documents cannot be read."""
    pass


class ProductNotFoundError(CatalogError):
    """Raised when a product document does not exist for a merchant."""

    def __init__(self, merchant_id: str, product_id: str):
        self.merchant_id = merchant_id
        self.product_id = product_id
        super().__init__(f"product not found: {merchant_id}/{product_id}")


class PersistenceError(IndexingError):
    """Raised when a batch of entity/link writes cannot be committed."""
    pass


class MergeConflictError(PersistenceError):
    """Raised when a stored field cannot take an additive-set merge.

    The writer reacts to this error only, by replacing the set union on
    ``field`` of the document at ``path`` with a plain overwrite.
    """

    def __init__(self, path: str, field: str, message: Optional[str] = None):
        self.path = path
        self.field = field
        super().__init__(
            message or f"cannot union into non-list field '{field}' of {path}"
        )
