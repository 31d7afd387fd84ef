"""Product text normalization and entity slugging."""
from entity_indexer.services.normalization.text import (
    DEFAULT_DESCRIPTION_CAP,
    DEFAULT_TAG_CAP,
    strip_html,
    truncate,
    clip,
    normalize_product,
    slugify,
    unique,
)

__all__: list[str] = [
    "DEFAULT_DESCRIPTION_CAP",
    "DEFAULT_TAG_CAP",
    "strip_html",
    "truncate",
    "clip",
    "normalize_product",
    "slugify",
    "unique",
]
