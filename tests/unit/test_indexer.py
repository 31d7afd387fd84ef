"""Unit tests for the indexing pipeline."""
import pytest

from entity_indexer.config import IndexerSettings
from entity_indexer.errors.exceptions import LLMTimeoutError, PersistenceError, ProductNotFoundError
from entity_indexer.models.extraction import CascadeTier
from entity_indexer.services.indexer import IndexingPipeline
from entity_indexer.services.llm.client import LLMRequest, MockLLMClient
from entity_indexer.services.persistence.paths import (
    entities_collection,
    entity_path,
    link_path,
    products_collection,
)
from entity_indexer.services.persistence.store import InMemoryDocumentStore
from entity_indexer.services.persistence.writer import PersistenceWriter

from tests.helpers import MERCHANT, P1_REPLY, TRUNCATED_REPLY, make_pipeline, make_product


def _graph(store: InMemoryDocumentStore):
    """Entity and link documents without timestamps."""
    return {
        path: {k: v for k, v in doc.items() if k != "updated_at"}
        for path, doc in store.documents.items()
        if not path.startswith("products/")
    }


def p1_only(request: LLMRequest) -> str:
    """Answers for p1, times out for everything else."""
    if '"id": "p1"' in request.prompt:
        return P1_REPLY
    raise LLMTimeoutError("upstream timed out")


class FailingStore(InMemoryDocumentStore):
    async def commit(self, ops):
        raise PersistenceError("store unavailable")


class TestIndexProduct:
    """Test single-product indexing."""

    @pytest.mark.asyncio
    async def test_model_extraction_written(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        outcome = await pipeline.index_product_by_id(MERCHANT, "p1")

        assert outcome.ok
        assert outcome.tier == CascadeTier.ATTEMPT_FULL
        assert outcome.entities == 2
        assert outcome.wrote

        link = catalog_store.documents[link_path(MERCHANT, "p1")]
        assert link["entities"] == ["niacinamide", "zinc-pca"]
        for slug in ("niacinamide", "zinc-pca"):
            entity = catalog_store.documents[entity_path(MERCHANT, slug)]
            assert "p1" in entity["examples"]
            assert entity["status"] == "llm"

    @pytest.mark.asyncio
    async def test_salvaged_extraction_written(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([TRUNCATED_REPLY]))
        outcome = await pipeline.index_product_by_id(MERCHANT, "p1")

        assert outcome.ok
        assert outcome.tier == CascadeTier.SALVAGE
        assert outcome.reason is None
        assert outcome.entities == 1
        entity = catalog_store.documents[entity_path(MERCHANT, "niacinamide")]
        assert entity["confidence"] == 0.5
        assert catalog_store.documents[link_path(MERCHANT, "p1")]["entities"] == ["niacinamide"]

    @pytest.mark.asyncio
    async def test_timeouts_without_markers_write_nothing(self, catalog_store):
        """Heuristic fallback with no entities completes without writing."""
        pipeline = make_pipeline(catalog_store, MockLLMClient([LLMTimeoutError("slow")]))
        outcome = await pipeline.index_product_by_id(MERCHANT, "p2")

        assert not outcome.ok
        assert outcome.tier == CascadeTier.HEURISTIC_BASELINE
        assert outcome.reason.value == "timeout"
        assert outcome.entities == 0
        assert not outcome.wrote
        assert _graph(catalog_store) == {}

    @pytest.mark.asyncio
    async def test_timeouts_fall_back_to_heuristic(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([LLMTimeoutError("slow")]))
        outcome = await pipeline.index_product_by_id(MERCHANT, "p1")

        assert outcome.tier == CascadeTier.HEURISTIC_BASELINE
        assert outcome.wrote
        entity = catalog_store.documents[entity_path(MERCHANT, "niacinamide")]
        assert entity["status"] == "stub"
        assert entity["confidence"] == 0.3

    @pytest.mark.asyncio
    async def test_empty_model_result_replaces_link(self, catalog_store):
        catalog_store.put(link_path(MERCHANT, "p1"), {"product_id": "p1", "entities": ["old"]})
        pipeline = make_pipeline(catalog_store, MockLLMClient(['{"product": {"id": "p1"}, "entities": []}']))
        outcome = await pipeline.index_product_by_id(MERCHANT, "p1")

        assert outcome.wrote
        assert catalog_store.documents[link_path(MERCHANT, "p1")]["entities"] == []

    @pytest.mark.asyncio
    async def test_reindex_is_idempotent(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        await pipeline.index_product_by_id(MERCHANT, "p1")
        first = _graph(catalog_store)
        await pipeline.index_product_by_id(MERCHANT, "p1")
        assert _graph(catalog_store) == first
        assert first[entity_path(MERCHANT, "niacinamide")]["examples"] == ["p1"]

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        outcome = await pipeline.index_product(MERCHANT, make_product(), commit=False)

        assert outcome.ok
        assert not outcome.wrote
        assert catalog_store.commits == 0

    @pytest.mark.asyncio
    async def test_missing_product(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        with pytest.raises(ProductNotFoundError):
            await pipeline.index_product_by_id(MERCHANT, "nope")

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, product):
        store = FailingStore()
        pipeline = make_pipeline(
            store,
            MockLLMClient([P1_REPLY]),
            writer=PersistenceWriter(store, max_attempts=1, retry_wait=0),
        )
        with pytest.raises(PersistenceError):
            await pipeline.index_product(MERCHANT, product)


class TestBootstrap:
    """Test catalog-wide runs."""

    @pytest.mark.asyncio
    async def test_summary(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([p1_only]))
        summary = await pipeline.bootstrap(MERCHANT, commit=True, verbose=True)

        assert summary.status == "ok"
        assert summary.processed == 3
        assert summary.written == 2
        assert summary.failures == 2
        assert summary.errors == 0
        assert summary.reasons == {"timeout": 2}
        assert summary.tiers == {"attempt_full": 1, "heuristic_baseline": 2}
        assert [s["id"] for s in summary.samples] == ["p2", "p3"]
        assert summary.samples[0]["reason"] == "timeout"
        attempts = summary.samples[0]["attempts"]
        assert [a["tier"] for a in attempts] == ["attempt_full", "attempt_minimal", "attempt_tiny"]
        assert {a["reason"] for a in attempts} == {"timeout"}

        entities = await catalog_store.list_collection(entities_collection(MERCHANT))
        slugs = {e["id"] for e in entities}
        assert slugs == {"niacinamide", "zinc-pca", "battery-wh", "power"}
        assert link_path(MERCHANT, "p2") not in catalog_store.documents

        data = summary.to_dict()
        assert data["merchant_id"] == MERCHANT
        assert data["commit"] is True
        assert len(data["samples"]) == 2

    @pytest.mark.asyncio
    async def test_dry_run(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        summary = await pipeline.bootstrap(MERCHANT)

        assert summary.commit is False
        assert summary.processed == 3
        assert summary.written == 0
        assert summary.samples is None
        assert "samples" not in summary.to_dict()
        assert _graph(catalog_store) == {}

    @pytest.mark.asyncio
    async def test_no_products(self, memory_store):
        pipeline = make_pipeline(memory_store, MockLLMClient([P1_REPLY]))
        summary = await pipeline.bootstrap("unknown-merchant", commit=True)
        assert summary.status == "no_products"
        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_limit(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        summary = await pipeline.bootstrap(MERCHANT, limit=2)
        assert summary.processed == 2

    @pytest.mark.asyncio
    async def test_limit_below_one_rejected(self, catalog_store):
        """An explicit zero limit is an error, not the default."""
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]), default_limit=1)
        with pytest.raises(ValueError):
            await pipeline.bootstrap(MERCHANT, limit=0)

    @pytest.mark.asyncio
    async def test_default_limit_used_when_unset(self, catalog_store):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]), default_limit=1)
        summary = await pipeline.bootstrap(MERCHANT)
        assert summary.processed == 1

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, memory_store):
        for i in range(20):
            memory_store.add_product(products_collection(MERCHANT), {"id": f"sku-{i}", "title": f"Item {i}"})
        client = MockLLMClient([P1_REPLY], delay=0.01)
        pipeline = make_pipeline(memory_store, client, concurrency=3)
        summary = await pipeline.bootstrap(MERCHANT, commit=True)

        assert summary.processed == 20
        assert summary.written == 20
        assert 1 < client.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_batch_failure_counted_not_raised(self):
        store = FailingStore()
        store.add_product(products_collection(MERCHANT), {"id": "p1", "description": "Ingredients: Aloe"})
        store.add_product(products_collection(MERCHANT), {"id": "p2", "description": "Ingredients: Shea"})
        pipeline = make_pipeline(
            store,
            MockLLMClient([P1_REPLY]),
            writer=PersistenceWriter(store, max_attempts=1, retry_wait=0),
        )
        summary = await pipeline.bootstrap(MERCHANT, commit=True)

        assert summary.errors == 2
        assert summary.processed == 0
        assert summary.written == 0

    @pytest.mark.asyncio
    async def test_from_settings(self, memory_store):
        settings = IndexerSettings(concurrency=2, description_caps=[300, 200, 100], batch_size=50)
        pipeline = IndexingPipeline.from_settings(memory_store, MockLLMClient(), settings)
        assert pipeline.concurrency == 2
        assert pipeline.batch_size == 50
        assert [s.description_cap for s in pipeline.cascade.strategies] == [300, 200, 100]
        assert pipeline.baseline_cap == 300
