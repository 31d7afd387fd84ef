"""Shared builders for unit tests."""
import json

from entity_indexer.models.product import Product
from entity_indexer.services.extraction.cascade import ExtractionCascade
from entity_indexer.services.indexer import IndexingPipeline

MERCHANT = "acme-beauty"

P1_REPLY = json.dumps({
    "product": {"id": "p1"},
    "entities": [
        {
            "name": "Niacinamide",
            "type": "ingredient",
            "synonyms": ["vitamin B3"],
            "evidence": ["Ingredients: Niacinamide"],
            "fact": "A form of vitamin B3.",
            "cautions": "",
        },
        {"name": "Zinc PCA", "type": "ingredient"},
    ],
    "specs": [],
    "flags": ["skincare"],
})

# Cut off by the token limit mid-object
TRUNCATED_REPLY = '{"product":{"id":"p1"},"entities":[{"name":"Niacinamide","type":"ingredient"'


def make_product(product_id: str = "p1", **overrides) -> Product:
    data = {
        "id": product_id,
        "title": "Clarifying Serum",
        "description": "Ingredients: Niacinamide, Zinc PCA",
        "tags": ["skincare"],
    }
    data.update(overrides)
    return Product.model_validate(data)


def make_cascade(client, timeout: float = 1.0) -> ExtractionCascade:
    """Cascade with no tier backoff and a short per-attempt timeout."""
    return ExtractionCascade(client, timeout=timeout, backoff=0)


def make_pipeline(store, client, timeout: float = 1.0, **kwargs) -> IndexingPipeline:
    return IndexingPipeline(store, client, cascade=make_cascade(client, timeout), **kwargs)
