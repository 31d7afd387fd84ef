"""Persisted entity graph documents.

Layout in the document store:
    entities/{merchant}/{slug}           -> EntityDocument
    entityLinks/{merchant}/{productId}   -> LinkDocument
"""
from datetime import datetime, timezone
from typing import Dict, List, Literal

from pydantic import BaseModel, Field

SCHEMA_VERSION = 1

MAX_SLUG_LENGTH = 80
MAX_ENTITY_SYNONYMS = 12
MAX_ENTITY_FACT = 400
MAX_ENTITY_CAUTIONS = 300
MAX_LINK_ENTITIES = 64
MAX_LINK_EVIDENCE = 2
MAX_EVIDENCE_LENGTH = 240


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EntityDocument(BaseModel):
    """Merchant-scoped entity, keyed by slug.

    Created on first sighting and merged on every later one: scalar fields
    are last-write-wins, ``confidence`` keeps the maximum and ``examples``
    accumulates product ids.
    """

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    synonyms: List[str] = Field(default_factory=list, max_length=MAX_ENTITY_SYNONYMS)
    fact: str = Field(default="", max_length=MAX_ENTITY_FACT)
    cautions: str = Field(default="", max_length=MAX_ENTITY_CAUTIONS)
    status: Literal["llm", "stub"] = "stub"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    examples: List[str] = Field(default_factory=list)
    schema_version: int = SCHEMA_VERSION
    updated_at: datetime = Field(default_factory=utc_now)


class LinkDocument(BaseModel):
    """What one product currently extracts to. Replaced wholesale on re-index."""

    product_id: str = Field(..., min_length=1)
    entities: List[str] = Field(default_factory=list, max_length=MAX_LINK_ENTITIES)
    evidence: Dict[str, List[str]] = Field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION
    updated_at: datetime = Field(default_factory=utc_now)
