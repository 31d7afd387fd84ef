"""Entity indexing pipeline.

Ties the pieces together for the two commands:

    bootstrap   every product of a merchant, bounded concurrency, batched writes
    index       one product, written in its own batch

Per product: run the extraction cascade; if it produced nothing, fall back
to the heuristic baseline; build the write ops and commit (or stage) them.
A model result with zero entities still replaces the product's link; a
heuristic result with zero entities writes nothing.
"""
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from entity_indexer.config import IndexerSettings, LLMSettings
from entity_indexer.models.extraction import CascadeOutcome, CascadeTier
from entity_indexer.models.product import Product
from entity_indexer.models.result import FailureReason
from entity_indexer.services.catalog import fetch_products, get_product
from entity_indexer.services.extraction.cascade import ExtractionCascade, strategies_with_caps
from entity_indexer.services.extraction.heuristics import baseline_extract
from entity_indexer.services.llm.client import LLMClient, get_llm_client
from entity_indexer.services.normalization.text import DEFAULT_TAG_CAP, normalize_product
from entity_indexer.services.persistence.store import DocumentStore
from entity_indexer.services.persistence.writer import (
    DEFAULT_BATCH_SIZE,
    BatchWriter,
    PersistenceWriter,
)
from entity_indexer.services.scheduler import BoundedScheduler

logger = structlog.get_logger(__name__)

RAW_SAMPLE_LENGTH = 120


@dataclass
class ProductOutcome:
    """What happened to one product.

    ``ok`` is True when a model tier (or salvage) produced the extraction;
    ``reason`` is the last cascade failure when it did not.
    """
    product_id: str
    tier: Optional[CascadeTier] = None
    ok: bool = False
    reason: Optional[FailureReason] = None
    entities: int = 0
    wrote: bool = False
    elapsed_ms: int = 0
    error: Optional[str] = None
    raw_preview: str = ""
    failures: Dict[str, str] = field(default_factory=dict)
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "product_id": self.product_id,
            "tier": self.tier.value if self.tier else None,
            "ok": self.ok,
            "reason": self.reason.value if self.reason else None,
            "entities": self.entities,
            "wrote": self.wrote,
            "elapsed_ms": self.elapsed_ms,
        }
        if self.failures:
            data["failures"] = dict(self.failures)
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BootstrapSummary:
    """Aggregate result of a bootstrap run."""
    merchant_id: str
    commit: bool
    status: str = "ok"
    processed: int = 0
    written: int = 0
    failures: int = 0
    errors: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)
    tiers: Dict[str, int] = field(default_factory=dict)
    avg_cascade_ms: int = 0
    total_ms: int = 0
    samples: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "merchant_id": self.merchant_id,
            "status": self.status,
            "commit": self.commit,
            "processed": self.processed,
            "written": self.written,
            "failures": self.failures,
            "errors": self.errors,
            "reasons": dict(self.reasons),
            "tiers": dict(self.tiers),
            "avg_cascade_ms": self.avg_cascade_ms,
            "total_ms": self.total_ms,
        }
        if self.samples is not None:
            data["samples"] = list(self.samples)
        return data


def _preview(text: str) -> str:
    return " ".join(text.split())[:RAW_SAMPLE_LENGTH]


class IndexingPipeline:
    """Cascade + baseline fallback + writer, over one store and one LLM client."""

    def __init__(
        self,
        store: DocumentStore,
        client: LLMClient,
        cascade: Optional[ExtractionCascade] = None,
        writer: Optional[PersistenceWriter] = None,
        concurrency: int = 6,
        batch_size: int = DEFAULT_BATCH_SIZE,
        default_limit: int = 1000,
        sample_limit: int = 10,
        baseline_cap: int = 900,
        tag_cap: int = DEFAULT_TAG_CAP,
    ):
        self.store = store
        self.client = client
        self.cascade = cascade or ExtractionCascade(client, tag_cap=tag_cap)
        self.writer = writer or PersistenceWriter(store)
        self.concurrency = concurrency
        self.batch_size = batch_size
        self.default_limit = default_limit
        self.sample_limit = sample_limit
        self.baseline_cap = baseline_cap
        self.tag_cap = tag_cap

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        client: LLMClient,
        settings: IndexerSettings,
    ) -> "IndexingPipeline":
        cascade = ExtractionCascade(
            client,
            strategies=strategies_with_caps(settings.description_caps),
            timeout=settings.llm_timeout_seconds,
            backoff=settings.tier_backoff_seconds,
            jitter=settings.tier_backoff_jitter,
            tag_cap=settings.tag_cap,
            salvage_cap=settings.salvage_cap,
        )
        writer = PersistenceWriter(store, max_attempts=settings.write_max_attempts)
        return cls(
            store,
            client,
            cascade=cascade,
            writer=writer,
            concurrency=settings.concurrency,
            batch_size=settings.batch_size,
            default_limit=settings.default_limit,
            sample_limit=settings.sample_limit,
            baseline_cap=settings.description_caps[0],
            tag_cap=settings.tag_cap,
        )

    async def close(self) -> None:
        await self.client.close()
        await self.store.close()

    async def index_product(
        self,
        merchant_id: str,
        product: Product,
        commit: bool = True,
        batch: Optional[BatchWriter] = None,
    ) -> ProductOutcome:
        """Extract and persist one product.

        Args:
            merchant_id: Merchant owning the product
            product: Catalog product
            commit: False for a dry run (nothing is written)
            batch: Stage ops here instead of committing immediately; the
                caller flushes it and settles ``wrote``

        Raises:
            PersistenceError: If an immediate commit fails
        """
        log = logger.bind(merchant_id=merchant_id, product_id=product.id)
        cascade: CascadeOutcome = await self.cascade.run(product)

        result = ProductOutcome(
            product_id=product.id,
            ok=cascade.ok,
            reason=None if cascade.ok else cascade.reason,
            elapsed_ms=cascade.elapsed_ms,
            failures=cascade.failures,
            raw_preview=_preview(cascade.best_raw_text),
            attempts=[a.to_dict() for a in cascade.attempts],
        )
        if cascade.ok:
            extraction, tier = cascade.extraction, cascade.tier
        else:
            normalized = normalize_product(product, cap=self.baseline_cap, tag_cap=self.tag_cap)
            extraction, tier = baseline_extract(normalized), CascadeTier.HEURISTIC_BASELINE
            log.info("heuristic_fallback", reason=result.reason.value if result.reason else None,
                     entities=len(extraction.entities))
        result.tier = tier
        result.entities = len(extraction.entities)

        logger.info("metric", name="cascade_duration_ms", value=cascade.elapsed_ms, tier=tier.value)

        if tier == CascadeTier.HEURISTIC_BASELINE and not extraction.entities:
            return result
        if not commit:
            return result

        ops = self.writer.build_ops(merchant_id, product.id, extraction, tier)
        if batch is not None:
            await batch.stage(product.id, ops)
        else:
            await self.writer.commit(ops)
            result.wrote = True
            logger.info("metric", name="products_indexed_total", value=1, tier=tier.value)
        return result

    async def index_product_by_id(
        self,
        merchant_id: str,
        product_id: str,
        commit: bool = True,
    ) -> ProductOutcome:
        """Load a product from the catalog and index it.

        Raises:
            ProductNotFoundError: If the product does not exist
            PersistenceError: If the write fails
        """
        product = await get_product(self.store, merchant_id, product_id)
        return await self.index_product(merchant_id, product, commit=commit)

    async def bootstrap(
        self,
        merchant_id: str,
        limit: Optional[int] = None,
        commit: bool = False,
        verbose: bool = False,
    ) -> BootstrapSummary:
        """Index a merchant's catalog.

        Returns:
            BootstrapSummary; ``status`` is "no_products" for an empty catalog

        Raises:
            ValueError: If ``limit`` is given and below 1
        """
        if limit is not None and limit < 1:
            raise ValueError("limit must be >= 1")
        started = time.perf_counter()
        log = logger.bind(merchant_id=merchant_id, commit=commit)
        if limit is None:
            limit = self.default_limit
        products = await fetch_products(self.store, merchant_id, limit)
        summary = BootstrapSummary(merchant_id=merchant_id, commit=commit)
        if not products:
            summary.status = "no_products"
            summary.total_ms = int((time.perf_counter() - started) * 1000)
            log.info("bootstrap_no_products")
            return summary

        log.info("bootstrap_started", products=len(products), concurrency=self.concurrency)
        batch = BatchWriter(self.writer, self.batch_size) if commit else None
        scheduler = BoundedScheduler(self.concurrency)

        async def work(product: Product) -> ProductOutcome:
            return await self.index_product(merchant_id, product, commit=commit, batch=batch)

        scheduled = await scheduler.run(products, work)
        if batch is not None:
            await batch.close()

        outcomes: List[ProductOutcome] = []
        for task in scheduled:
            if task.error is not None:
                outcomes.append(ProductOutcome(
                    product_id=task.item.id,
                    error=f"{type(task.error).__name__}: {task.error}",
                ))
                continue
            outcome = task.result
            if batch is not None:
                if outcome.product_id in batch.failed:
                    outcome.error = batch.failed[outcome.product_id]
                outcome.wrote = outcome.product_id in batch.written
            outcomes.append(outcome)

        samples: List[Dict[str, Any]] = []
        reasons: Counter = Counter()
        tiers: Counter = Counter()
        cascade_ms = []
        for outcome in outcomes:
            if outcome.error:
                summary.errors += 1
                continue
            summary.processed += 1
            cascade_ms.append(outcome.elapsed_ms)
            if outcome.tier:
                tiers[outcome.tier.value] += 1
            if outcome.wrote:
                summary.written += 1
            if not outcome.ok:
                summary.failures += 1
                reason = outcome.reason.value if outcome.reason else FailureReason.ERROR.value
                reasons[reason] += 1
                if len(samples) < self.sample_limit:
                    samples.append({
                        "id": outcome.product_id,
                        "reason": reason,
                        "raw": outcome.raw_preview or None,
                        "attempts": outcome.attempts,
                    })

        summary.reasons = dict(reasons)
        summary.tiers = dict(tiers)
        summary.avg_cascade_ms = int(sum(cascade_ms) / len(cascade_ms)) if cascade_ms else 0
        summary.total_ms = int((time.perf_counter() - started) * 1000)
        if verbose:
            summary.samples = samples

        logger.info("metric", name="products_indexed_total", value=summary.written, merchant_id=merchant_id)
        log.info(
            "bootstrap_finished",
            processed=summary.processed,
            written=summary.written,
            failures=summary.failures,
            errors=summary.errors,
            peak_in_flight=scheduler.max_in_flight,
            total_ms=summary.total_ms,
        )
        return summary


def create_pipeline(
    store: DocumentStore,
    llm: LLMSettings,
    indexer: IndexerSettings,
) -> IndexingPipeline:
    """Pipeline over ``store`` with the configured LLM backend and tunables."""
    return IndexingPipeline.from_settings(store, get_llm_client(llm), indexer)
