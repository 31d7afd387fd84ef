"""arq worker configuration for entity indexing.

This module configures the arq worker with:
    - bootstrap_catalog_task: Index a merchant's whole catalog
    - index_product_task: Re-index a single product

Run with: `arq entity_indexer.worker.WorkerSettings`
"""
from arq.connections import RedisSettings
from typing import Dict, Any
import structlog

from entity_indexer.config import settings, llm_settings, indexer_settings, configure_logging
from entity_indexer.db.base import dispose_engine
from entity_indexer.db.document_store import SqlDocumentStore
from entity_indexer.services.indexer import create_pipeline
from entity_indexer.tasks.indexing_tasks import bootstrap_catalog_task, index_product_task

# Configure logging
configure_logging(settings.log_level, settings.log_format)
logger = structlog.get_logger(__name__)


async def startup(ctx: Dict[str, Any]) -> None:
    """Build the pipeline shared by all jobs of this worker."""
    ctx["pipeline"] = create_pipeline(SqlDocumentStore(), llm_settings, indexer_settings)
    logger.info(
        "worker_started",
        queue_name=settings.queue_name,
        llm_backend=llm_settings.backend.value,
        llm_model=llm_settings.model,
        concurrency=indexer_settings.concurrency,
    )


async def shutdown(ctx: Dict[str, Any]) -> None:
    """Release the LLM transport and database connections."""
    pipeline = ctx.pop("pipeline", None)
    if pipeline is not None:
        await pipeline.close()
    await dispose_engine()
    logger.info("worker_stopped")


class WorkerSettings:
    """arq worker configuration settings.

    Registered Tasks:
        - bootstrap_catalog_task
        - index_product_task
    """

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = settings.max_jobs
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 3

    functions = [
        bootstrap_catalog_task,
        index_product_task,
    ]

    on_startup = startup
    on_shutdown = shutdown
