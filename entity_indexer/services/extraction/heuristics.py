"""Model-free fallback extractor.

Used only when every cascade tier and salvage came back empty. Looks for a
labelled list ("Ingredients: a, b, c") and simple capacity/power/volume
values in the description and tags. Low precision by nature; entities it
produces are stored as stubs with low confidence.
"""
import re
from typing import List

from entity_indexer.models.extraction import (
    CanonicalExtraction,
    ExtractedEntity,
    ExtractedSpec,
    ProductRef,
)
from entity_indexer.models.product import NormalizedProduct
from entity_indexer.services.normalization.text import slugify

MAX_LIST_ITEMS = 20
MAX_BASELINE_ENTITIES = 24

_LABEL_RE = re.compile(r"(?:ingredients?|components?|specs?)\s*[:\-]\s*([^\n]{0,300})", re.IGNORECASE)
_SENTENCE_END_RE = re.compile(r"\.\s")
_SPLIT_RE = re.compile(r"[,•|;/\n]+")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")

# (pattern, spec name, entity name)
_UNIT_PATTERNS = [
    (re.compile(r"\b(\d{2,5})\s*(Wh)\b", re.IGNORECASE), "battery", "Battery (Wh)"),
    (re.compile(r"\b(\d{3,6})\s*(mAh)\b", re.IGNORECASE), "battery", "Battery (mAh)"),
    (re.compile(r"\b(\d{2,4})\s*(W)\b"), "power", "Power"),
    (re.compile(r"\b(\d{1,4})\s*(ml)\b", re.IGNORECASE), "volume", "Volume"),
]


def _listed_names(text: str) -> List[str]:
    match = _LABEL_RE.search(text)
    if not match:
        return []
    chunk = _SENTENCE_END_RE.split(match.group(1), maxsplit=1)[0].rstrip(".")
    names = []
    for part in _SPLIT_RE.split(chunk):
        name = _MULTI_SPACE_RE.sub(" ", part.strip())
        if 3 <= len(name) <= 40 and not name[0].isdigit():
            names.append(name)
        if len(names) >= MAX_LIST_ITEMS:
            break
    return names


def baseline_extract(product: NormalizedProduct) -> CanonicalExtraction:
    """Extract a few low-confidence entities/specs without calling a model.

    Always succeeds; the entity list may be empty.
    """
    text = "\n".join([product.description or "", ", ".join(product.tags)])
    entities: List[ExtractedEntity] = []
    specs: List[ExtractedSpec] = []

    for name in _listed_names(text):
        entities.append(ExtractedEntity(name=name, type="ingredient"))

    for pattern, spec_name, entity_name in _UNIT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        specs.append(ExtractedSpec(name=spec_name, value=float(match.group(1)), unit=match.group(2)))
        entities.append(ExtractedEntity(name=entity_name, type="spec"))

    seen = set()
    deduped = []
    for entity in entities:
        slug = slugify(entity.name)
        if slug and slug not in seen:
            seen.add(slug)
            deduped.append(entity)

    return CanonicalExtraction(
        product=ProductRef(id=product.id),
        entities=deduped[:MAX_BASELINE_ENTITIES],
        specs=specs,
        flags=[],
    )
