"""Catalog reads: product documents under ``products/{merchant}/items``."""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from entity_indexer.errors.exceptions import CatalogError, PersistenceError, ProductNotFoundError
from entity_indexer.models.product import Product
from entity_indexer.services.persistence.paths import product_path, products_collection
from entity_indexer.services.persistence.store import DocumentStore

logger = structlog.get_logger(__name__)


def _to_product(document: Dict[str, Any], fallback_id: Optional[str] = None) -> Product:
    data = dict(document)
    if fallback_id is not None and not data.get("id"):
        data["id"] = fallback_id
    return Product.model_validate(data)


async def fetch_products(
    store: DocumentStore,
    merchant_id: str,
    limit: int = 1000,
) -> List[Product]:
    """Read up to ``limit`` products for a merchant.

    Documents that do not parse as products are skipped with a warning.

    Raises:
        CatalogError: If the store cannot be read
    """
    try:
        documents = await store.list_collection(products_collection(merchant_id), limit=limit)
    except PersistenceError as e:
        raise CatalogError(f"Failed to read catalog for {merchant_id}: {e}") from e

    products = []
    for document in documents:
        try:
            products.append(_to_product(document))
        except ValidationError as e:
            logger.warning(
                "catalog_product_skipped",
                merchant_id=merchant_id,
                product_id=document.get("id"),
                error=str(e),
            )
    logger.info("catalog_fetched", merchant_id=merchant_id, products=len(products), limit=limit)
    return products


async def get_product(store: DocumentStore, merchant_id: str, product_id: str) -> Product:
    """Read one product.

    Raises:
        ProductNotFoundError: If the product document does not exist
        CatalogError: If it exists but cannot be read or parsed
    """
    try:
        document = await store.get(product_path(merchant_id, product_id))
    except PersistenceError as e:
        raise CatalogError(f"Failed to read product {product_id}: {e}") from e
    if document is None:
        raise ProductNotFoundError(merchant_id, product_id)
    try:
        return _to_product(document, fallback_id=str(product_id))
    except ValidationError as e:
        raise CatalogError(f"Product {product_id} is not a valid product document: {e}") from e
