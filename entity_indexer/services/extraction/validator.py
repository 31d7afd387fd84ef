"""Output contract for model extractions.

Coerces a parsed JSON value into a ``CanonicalExtraction`` or rejects it
with every violated field listed. Oversized strings are clipped rather than
rejected, entities missing a name or type are dropped individually, and only
structural problems (non-object root, missing ``product.id``, non-array
collections) reject the whole document.
"""
import math
from typing import Any, List, Optional

from entity_indexer.models.extraction import (
    CanonicalExtraction,
    ExtractedEntity,
    ExtractedSpec,
    ProductRef,
)
from entity_indexer.models.result import Err, FailureReason, Ok, Result
from entity_indexer.services.normalization.text import clip

MAX_ENTITIES = 64
MAX_SYNONYMS = 8
MAX_EVIDENCE = 2
MAX_EVIDENCE_LENGTH = 240
MAX_FACT_LENGTH = 240
MAX_CAUTIONS_LENGTH = 160
MAX_SPECS = 32
MAX_FLAGS = 16


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _text_list(value: Any, limit: int, max_len: Optional[int] = None) -> List[str]:
    if not isinstance(value, list):
        return []
    items = [_text(v) for v in value[:limit]]
    if max_len is not None:
        items = [clip(v, max_len) for v in items]
    return [v for v in items if v]


def _number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; booleans are not numbers here."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _entity(raw: Any) -> Optional[ExtractedEntity]:
    if not isinstance(raw, dict):
        return None
    name = _text(raw.get("name"))
    entity_type = _text(raw.get("type"))
    if not name or not entity_type:
        return None
    return ExtractedEntity(
        name=name,
        type=entity_type,
        synonyms=_text_list(raw.get("synonyms"), MAX_SYNONYMS),
        evidence=_text_list(raw.get("evidence"), MAX_EVIDENCE, MAX_EVIDENCE_LENGTH),
        fact=clip(raw.get("fact"), MAX_FACT_LENGTH),
        cautions=clip(raw.get("cautions"), MAX_CAUTIONS_LENGTH),
    )


def _spec(raw: Any) -> Optional[ExtractedSpec]:
    if not isinstance(raw, dict):
        return None
    name = _text(raw.get("name"))
    if not name:
        return None
    return ExtractedSpec(name=name, value=_number(raw.get("value")), unit=_text(raw.get("unit")))


def validate_extraction(obj: Any, expected_product_id: str) -> Result[CanonicalExtraction]:
    """Validate and canonicalize one parsed model response.

    Args:
        obj: Value returned by JSON recovery
        expected_product_id: Id of the product actually being indexed; a
            different id echoed by the model is replaced with this one

    Returns:
        Ok(CanonicalExtraction) or Err(SCHEMA_INVALID) listing violations
    """
    if not isinstance(obj, dict):
        return Err(FailureReason.SCHEMA_INVALID, ["root: expected object"])

    errors: List[str] = []

    product = obj.get("product")
    if not isinstance(product, dict):
        errors.append("product: expected object")
    else:
        echoed = product.get("id")
        if echoed is None or (isinstance(echoed, str) and not echoed.strip()):
            errors.append("product.id: required")

    entities: List[ExtractedEntity] = []
    raw_entities = obj.get("entities")
    if isinstance(raw_entities, list):
        for raw in raw_entities[:MAX_ENTITIES]:
            entity = _entity(raw)
            if entity is not None:
                entities.append(entity)
    elif raw_entities is not None:
        errors.append("entities: expected array")

    specs: List[ExtractedSpec] = []
    raw_specs = obj.get("specs")
    if isinstance(raw_specs, list):
        for raw in raw_specs[:MAX_SPECS]:
            spec = _spec(raw)
            if spec is not None:
                specs.append(spec)
    elif raw_specs is not None:
        errors.append("specs: expected array")

    raw_flags = obj.get("flags")
    if raw_flags is not None and not isinstance(raw_flags, list):
        errors.append("flags: expected array")
    flags = _text_list(raw_flags, MAX_FLAGS)

    if errors:
        return Err(FailureReason.SCHEMA_INVALID, errors)

    return Ok(CanonicalExtraction(
        product=ProductRef(id=str(expected_product_id)),
        entities=entities,
        specs=specs,
        flags=flags,
    ))
