"""Pydantic models and result types for the indexing pipeline."""
from entity_indexer.models.product import Product, NormalizedProduct
from entity_indexer.models.result import FailureReason, Ok, Err, Result
from entity_indexer.models.extraction import (
    ExtractedEntity,
    ExtractedSpec,
    ProductRef,
    CanonicalExtraction,
    CascadeTier,
    TierAttempt,
    CascadeOutcome,
    TIER_CONFIDENCE,
    is_model_tier,
)
from entity_indexer.models.documents import EntityDocument, LinkDocument

__all__ = [
    "Product",
    "NormalizedProduct",
    "FailureReason",
    "Ok",
    "Err",
    "Result",
    "ExtractedEntity",
    "ExtractedSpec",
    "ProductRef",
    "CanonicalExtraction",
    "CascadeTier",
    "TierAttempt",
    "CascadeOutcome",
    "TIER_CONFIDENCE",
    "is_model_tier",
    "EntityDocument",
    "LinkDocument",
]
