"""Entity/link persistence.

One product's extraction becomes one atomic batch:

    entityLinks/{merchant}/{productId}   replaced wholesale
    entities/{merchant}/{slug}           merged (ENTITY_MERGE_POLICY), one per linked slug

Every slug in the link has its entity document in the same batch, so a
link never points at a missing entity.
"""
import asyncio
from typing import Dict, List, Optional, Sequence

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from entity_indexer.errors.exceptions import MergeConflictError, PersistenceError
from entity_indexer.models.documents import (
    MAX_ENTITY_CAUTIONS,
    MAX_ENTITY_FACT,
    MAX_ENTITY_SYNONYMS,
    MAX_EVIDENCE_LENGTH,
    MAX_LINK_ENTITIES,
    MAX_LINK_EVIDENCE,
    EntityDocument,
    LinkDocument,
    utc_now,
)
from entity_indexer.models.extraction import (
    TIER_CONFIDENCE,
    CanonicalExtraction,
    CascadeTier,
    ExtractedEntity,
    is_model_tier,
)
from entity_indexer.services.normalization.text import clip, slugify, unique
from entity_indexer.services.persistence.merge import (
    ENTITY_MERGE_POLICY,
    FieldStrategy,
    WriteOp,
)
from entity_indexer.services.persistence.paths import entity_path, link_path
from entity_indexer.services.persistence.store import DocumentStore

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 400


def collapse_entities(entities: Sequence[ExtractedEntity]) -> Dict[str, ExtractedEntity]:
    """Group entities by slug, keeping first-seen order.

    The first occurrence supplies name and type; synonyms and evidence are
    unioned, and an empty fact or caution is filled from later duplicates.
    Entities whose name has no slug are dropped.
    """
    collapsed: Dict[str, ExtractedEntity] = {}
    for entity in entities:
        slug = slugify(entity.name)
        if not slug:
            continue
        current = collapsed.get(slug)
        if current is None:
            collapsed[slug] = entity.model_copy(deep=True)
            continue
        current.synonyms = unique(current.synonyms + entity.synonyms)
        current.evidence = unique(current.evidence + entity.evidence)
        current.fact = current.fact or entity.fact
        current.cautions = current.cautions or entity.cautions
    return collapsed


class PersistenceWriter:
    """Builds and commits the write batch for one product's extraction."""

    def __init__(
        self,
        store: DocumentStore,
        max_attempts: int = 3,
        retry_wait: float = 0.2,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    def build_ops(
        self,
        merchant_id: str,
        product_id: str,
        extraction: CanonicalExtraction,
        tier: CascadeTier,
    ) -> List[WriteOp]:
        """Write ops for one extraction: the link first, then its entities."""
        now = utc_now()
        product_id = str(product_id)
        collapsed = collapse_entities(extraction.entities)
        slugs = list(collapsed)[:MAX_LINK_ENTITIES]

        evidence = {}
        for slug in slugs:
            snippets = [clip(s, MAX_EVIDENCE_LENGTH) for s in collapsed[slug].evidence]
            snippets = unique(snippets)[:MAX_LINK_EVIDENCE]
            if snippets:
                evidence[slug] = snippets

        link = LinkDocument(product_id=product_id, entities=slugs, evidence=evidence, updated_at=now)
        ops = [WriteOp(
            path=link_path(merchant_id, product_id),
            data=link.model_dump(mode="json"),
            mode="replace",
        )]

        status = "llm" if is_model_tier(tier) else "stub"
        confidence = TIER_CONFIDENCE[tier]
        for slug in slugs:
            entity = collapsed[slug]
            document = EntityDocument(
                name=entity.name,
                type=entity.type,
                synonyms=unique(entity.synonyms)[:MAX_ENTITY_SYNONYMS],
                fact=clip(entity.fact, MAX_ENTITY_FACT),
                cautions=clip(entity.cautions, MAX_ENTITY_CAUTIONS),
                status=status,
                confidence=confidence,
                examples=[product_id],
                updated_at=now,
            )
            ops.append(WriteOp(
                path=entity_path(merchant_id, slug),
                data=document.model_dump(mode="json"),
                mode="merge",
                policy=ENTITY_MERGE_POLICY,
            ))
        return ops

    async def _commit_with_retry(self, ops: Sequence[WriteOp]) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_wait, max=5),
                retry=retry_if_not_exception_type(MergeConflictError),
                reraise=True,
            ):
                with attempt:
                    await self.store.commit(ops)
        except (MergeConflictError, PersistenceError):
            raise
        except Exception as e:
            raise PersistenceError(f"batch commit failed: {e}") from e

    async def commit(self, ops: Sequence[WriteOp]) -> None:
        """Commit ``ops`` atomically.

        A merge conflict downgrades the offending field of the offending
        document to a plain overwrite and retries the whole batch. Any other
        failure is retried ``max_attempts`` times and then raised.

        Raises:
            PersistenceError: If the batch could not be committed
        """
        ops = list(ops)
        if not ops:
            return
        while True:
            try:
                await self._commit_with_retry(ops)
                return
            except MergeConflictError as e:
                fallback = self._overwrite_field(ops, e)
                if fallback is None:
                    raise
                logger.warning(
                    "merge_conflict_fallback",
                    path=e.path,
                    field=e.field,
                    ops=len(ops),
                )
                ops = fallback

    @staticmethod
    def _overwrite_field(ops: List[WriteOp], conflict: MergeConflictError) -> Optional[List[WriteOp]]:
        """Copy of ``ops`` with the conflicting union replaced, or None if nothing changed."""
        changed = False
        replaced = []
        for op in ops:
            if (
                op.path == conflict.path
                and op.mode == "merge"
                and op.policy.strategy_for(conflict.field) != FieldStrategy.OVERWRITE
            ):
                op = WriteOp(op.path, op.data, op.mode, op.policy.overwriting(conflict.field))
                changed = True
            replaced.append(op)
        return replaced if changed else None

    async def write(
        self,
        merchant_id: str,
        product_id: str,
        extraction: CanonicalExtraction,
        tier: CascadeTier,
    ) -> int:
        """Persist one extraction as a single batch.

        Returns:
            Number of write operations committed
        """
        ops = self.build_ops(merchant_id, product_id, extraction, tier)
        await self.commit(ops)
        logger.info(
            "product_persisted",
            merchant_id=merchant_id,
            product_id=product_id,
            tier=tier.value,
            entities=len(ops) - 1,
        )
        return len(ops)


class BatchWriter:
    """Groups several products' ops into batches of at most ``batch_size``.

    A product's ops are never split: the pending batch is flushed before a
    product that would push it over the cap is staged. A product with more
    ops than the cap is committed in a batch of its own.
    """

    def __init__(self, writer: PersistenceWriter, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.writer = writer
        self.batch_size = batch_size
        self.written: List[str] = []
        self.failed: Dict[str, str] = {}
        self.batches = 0
        self._ops: List[WriteOp] = []
        self._products: List[str] = []
        self._lock = asyncio.Lock()

    @property
    def pending_ops(self) -> int:
        return len(self._ops)

    async def stage(self, product_id: str, ops: Sequence[WriteOp]) -> None:
        """Queue one product's ops, flushing first if they would not fit."""
        if not ops:
            return
        async with self._lock:
            if self._ops and len(self._ops) + len(ops) > self.batch_size:
                await self._flush()
            self._ops.extend(ops)
            self._products.append(str(product_id))
            if len(self._ops) >= self.batch_size:
                await self._flush()

    async def flush(self) -> bool:
        """Commit the pending batch.

        A failed batch is recorded against each of its products and not
        raised, so the run can continue with the next batch.
        """
        async with self._lock:
            return await self._flush()

    async def _flush(self) -> bool:
        if not self._ops:
            return True
        ops, products = self._ops, self._products
        self._ops, self._products = [], []
        try:
            await self.writer.commit(ops)
        except PersistenceError as e:
            for product_id in products:
                self.failed[product_id] = str(e)
            logger.error(
                "batch_commit_failed",
                ops=len(ops),
                products=len(products),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        self.batches += 1
        self.written.extend(products)
        logger.info("batch_committed", ops=len(ops), products=len(products), batch=self.batches)
        return True

    async def close(self) -> None:
        await self.flush()
