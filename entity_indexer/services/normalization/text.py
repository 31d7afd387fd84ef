"""Text normalization for product records and entity names.

Pure functions: markup stripping, bounded truncation, and the slug that
serves as an entity's stable identity within a merchant.
"""
import re
import unicodedata
from typing import Any, Iterable, List, Optional

from entity_indexer.models.documents import MAX_SLUG_LENGTH
from entity_indexer.models.product import NormalizedProduct, Product

DEFAULT_DESCRIPTION_CAP = 900
DEFAULT_TAG_CAP = 16
ELLIPSIS = "…"

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def strip_html(text: Optional[str]) -> str:
    """Remove HTML-like tags and collapse whitespace."""
    if not text:
        return ""
    no_tags = _TAG_RE.sub(" ", str(text))
    return _WS_RE.sub(" ", no_tags).strip()


def truncate(text: str, cap: int, marker: str = ELLIPSIS) -> str:
    """Cut ``text`` to ``cap`` characters and append ``marker`` if it was cut."""
    if len(text) <= cap:
        return text
    return text[:cap] + marker


def clip(text: Any, max_len: int) -> str:
    """Bound a string to ``max_len`` characters, ellipsis included.

    Used for stored fields with hard limits, where the marker must fit
    inside the limit.
    """
    s = text.strip() if isinstance(text, str) else ""
    if len(s) <= max_len:
        return s
    return s[: max_len - 1].rstrip() + ELLIPSIS


def normalize_product(
    product: Product,
    cap: int = DEFAULT_DESCRIPTION_CAP,
    tag_cap: int = DEFAULT_TAG_CAP,
) -> NormalizedProduct:
    """Prepare a product for prompting.

    Args:
        product: Catalog product
        cap: Description budget in characters for this attempt
        tag_cap: Maximum number of tags kept

    Returns:
        NormalizedProduct with plain-text description and bounded tags
    """
    return NormalizedProduct(
        id=product.id,
        title=strip_html(product.title),
        description=truncate(strip_html(product.description), cap),
        tags=list(product.tags[:tag_cap]),
        specs=product.specs,
    )


def slugify(name: Any) -> str:
    """Deterministic lowercase, ASCII-folded, hyphenated key for ``name``.

    "Vitamin C", "vitamin-c " and "VITAMIN  C!" all map to "vitamin-c".
    The result is at most 80 characters and never starts or ends with a
    hyphen; it is empty when the name has no ASCII letters or digits.
    """
    if not isinstance(name, str):
        return ""
    folded = unicodedata.normalize("NFKD", name)
    folded = folded.encode("ascii", "ignore").decode("ascii").lower()
    folded = folded.replace("&", " and ")
    slug = _NON_SLUG_RE.sub("-", folded).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def unique(values: Iterable[Any]) -> List[Any]:
    """Order-preserving de-duplication that drops falsy values."""
    return list(dict.fromkeys(v for v in values if v))
