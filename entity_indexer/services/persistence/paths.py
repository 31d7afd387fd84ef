"""Document paths in the catalog store.

    products/{merchant}/items/{productId}
    entities/{merchant}/{slug}
    entityLinks/{merchant}/{productId}
"""
from typing import Tuple
from urllib.parse import quote

PRODUCTS = "products"
ENTITIES = "entities"
ENTITY_LINKS = "entityLinks"


def merchant_key(merchant_id: str) -> str:
    """Canonical merchant key (trimmed, lower-cased)."""
    key = str(merchant_id or "").strip().lower()
    if not key:
        raise ValueError("merchant id is required")
    return key


def doc_id(value: str) -> str:
    """Percent-encode an id so it stays a single path segment."""
    return quote(str(value), safe="")


def products_collection(merchant_id: str) -> str:
    return f"{PRODUCTS}/{merchant_key(merchant_id)}/items"


def product_path(merchant_id: str, product_id: str) -> str:
    return f"{products_collection(merchant_id)}/{doc_id(product_id)}"


def entities_collection(merchant_id: str) -> str:
    return f"{ENTITIES}/{merchant_key(merchant_id)}"


def entity_path(merchant_id: str, slug: str) -> str:
    return f"{entities_collection(merchant_id)}/{doc_id(slug)}"


def links_collection(merchant_id: str) -> str:
    return f"{ENTITY_LINKS}/{merchant_key(merchant_id)}"


def link_path(merchant_id: str, product_id: str) -> str:
    return f"{links_collection(merchant_id)}/{doc_id(product_id)}"


def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection, document id)."""
    collection, sep, document = path.rpartition("/")
    if not sep or not collection or not document:
        raise ValueError(f"not a document path: {path!r}")
    return collection, document
