"""
Indexing Tasks

arq task functions for catalog bootstrap and single-product re-indexing.
The pipeline is built once per worker in ``startup`` and read from ctx.
"""

import structlog
from typing import Any, Dict, Optional

from entity_indexer.errors.exceptions import CatalogError, PersistenceError, ProductNotFoundError
from entity_indexer.services.indexer import IndexingPipeline

logger = structlog.get_logger(__name__)


def _pipeline(ctx: Dict[str, Any]) -> IndexingPipeline:
    pipeline = ctx.get("pipeline")
    if pipeline is None:
        raise RuntimeError("indexing pipeline not initialized; worker startup did not run")
    return pipeline


async def bootstrap_catalog_task(
    ctx: Dict[str, Any],
    merchant_id: str,
    limit: Optional[int] = None,
    commit: bool = True,
    verbose: bool = False,
) -> Dict[str, Any]:
    """
    Index a merchant's whole catalog.

    Args:
        ctx: Worker context (holds the pipeline)
        merchant_id: Merchant to index
        limit: Maximum products to read (settings default when None)
        commit: False for a dry run
        verbose: Include failed-product samples in the summary

    Returns:
        Bootstrap summary dict, or a dict with status "error" if the
        catalog could not be read
    """
    log = logger.bind(merchant_id=merchant_id, job_id=ctx.get("job_id"))
    log.info("bootstrap_catalog_task_started", limit=limit, commit=commit)
    try:
        summary = await _pipeline(ctx).bootstrap(
            merchant_id, limit=limit, commit=commit, verbose=verbose
        )
    except CatalogError as e:
        log.error("bootstrap_catalog_task_failed", error=str(e))
        return {"merchant_id": merchant_id, "status": "error", "error": str(e)}
    return summary.to_dict()


async def index_product_task(
    ctx: Dict[str, Any],
    merchant_id: str,
    product_id: str,
    commit: bool = True,
) -> Dict[str, Any]:
    """
    Re-index one product.

    A missing product is reported, not retried. A failed write is raised so
    arq retries the job.

    Returns:
        ProductOutcome dict with a "status" key
    """
    log = logger.bind(merchant_id=merchant_id, product_id=product_id, job_id=ctx.get("job_id"))
    try:
        outcome = await _pipeline(ctx).index_product_by_id(merchant_id, product_id, commit=commit)
    except ProductNotFoundError as e:
        log.warning("index_product_task_not_found")
        return {"product_id": product_id, "status": "not_found", "error": str(e)}
    except PersistenceError as e:
        log.error("index_product_task_write_failed", error=str(e))
        raise

    log.info(
        "index_product_task_completed",
        tier=outcome.tier.value if outcome.tier else None,
        entities=outcome.entities,
        wrote=outcome.wrote,
    )
    return {"status": "success", **outcome.to_dict()}
