"""Command-line entry point.

Usage:
    entity-indexer bootstrap --merchant <id> [--limit 1000] [--commit] [--verbose]
    entity-indexer index --merchant <id> --product <productId> [--commit]

Without --commit nothing is written (dry run). Add --enqueue to hand the
job to the arq worker instead of running it in this process.
"""
import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

import structlog
from arq.connections import ArqRedis, RedisSettings, create_pool

from entity_indexer.config import configure_logging, indexer_settings, llm_settings, settings
from entity_indexer.db.document_store import SqlDocumentStore
from entity_indexer.errors.exceptions import CatalogError, IndexingError, ProductNotFoundError
from entity_indexer.services.indexer import IndexingPipeline, create_pipeline

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_FOUND = 2


def build_pipeline() -> IndexingPipeline:
    """Pipeline over the SQL catalog store and the configured LLM backend."""
    return create_pipeline(SqlDocumentStore(), llm_settings, indexer_settings)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return number


def _emit(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


async def _enqueue(function: str, **kwargs: Any) -> str:
    pool: ArqRedis = await create_pool(
        RedisSettings.from_dsn(settings.redis_url),
        default_queue_name=settings.queue_name,
    )
    try:
        job = await pool.enqueue_job(function, **kwargs)
        return job.job_id if job else ""
    finally:
        await pool.close()


async def run_bootstrap(args: argparse.Namespace) -> int:
    if args.enqueue:
        job_id = await _enqueue(
            "bootstrap_catalog_task",
            merchant_id=args.merchant,
            limit=args.limit,
            commit=args.commit,
            verbose=args.verbose,
        )
        _emit({"ok": True, "enqueued": "bootstrap_catalog_task", "job_id": job_id})
        return EXIT_OK

    pipeline = build_pipeline()
    try:
        summary = await pipeline.bootstrap(
            args.merchant, limit=args.limit, commit=args.commit, verbose=args.verbose
        )
    except CatalogError as e:
        _emit({"ok": False, "mode": "bootstrap", "error": str(e)})
        return EXIT_FAILED
    finally:
        await pipeline.close()
    _emit({"ok": True, "mode": "bootstrap", **summary.to_dict()})
    return EXIT_OK


async def run_index(args: argparse.Namespace) -> int:
    if args.enqueue:
        job_id = await _enqueue(
            "index_product_task",
            merchant_id=args.merchant,
            product_id=args.product,
            commit=args.commit,
        )
        _emit({"ok": True, "enqueued": "index_product_task", "job_id": job_id})
        return EXIT_OK

    pipeline = build_pipeline()
    try:
        outcome = await pipeline.index_product_by_id(args.merchant, args.product, commit=args.commit)
    except ProductNotFoundError as e:
        _emit({"ok": False, "mode": "index", "error": str(e)})
        return EXIT_NOT_FOUND
    except IndexingError as e:
        _emit({"ok": False, "mode": "index", "error": str(e)})
        return EXIT_FAILED
    finally:
        await pipeline.close()
    _emit({"ok": True, "mode": "index", "commit": args.commit, **outcome.to_dict()})
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entity-indexer",
        description="Build a merchant's entity graph from catalog product text",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    bootstrap = sub.add_parser("bootstrap", help="Index every product of a merchant")
    bootstrap.add_argument("--merchant", "-m", required=True, help="Merchant id")
    bootstrap.add_argument(
        "--limit",
        type=_positive_int,
        default=None,
        help=f"Maximum products to read (default: {indexer_settings.default_limit})",
    )
    bootstrap.add_argument("--commit", action="store_true", help="Write results (default: dry run)")
    bootstrap.add_argument("--verbose", action="store_true", help="Include failed-product samples")
    bootstrap.add_argument("--enqueue", action="store_true", help="Run on the arq worker")
    bootstrap.set_defaults(handler=run_bootstrap)

    index = sub.add_parser("index", help="Re-index one product")
    index.add_argument("--merchant", "-m", required=True, help="Merchant id")
    index.add_argument("--product", "-p", required=True, help="Product id")
    index.add_argument("--commit", action="store_true", help="Write results (default: dry run)")
    index.add_argument("--enqueue", action="store_true", help="Run on the arq worker")
    index.set_defaults(handler=run_index)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.log_level, settings.log_format)
    logger.info("indexer_command", command=args.command, merchant_id=args.merchant, commit=args.commit)
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    sys.exit(main())
