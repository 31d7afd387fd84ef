"""Multi-tier extraction cascade.

Each product gets up to three model attempts with progressively smaller
input and stricter output schemas, then a salvage scan of the best partial
response:

    ATTEMPT_FULL -> ATTEMPT_MINIMAL -> ATTEMPT_TINY -> SALVAGE

The tiers are data (``AttemptStrategy``) folded over with early exit, so
adding or removing a tier does not touch the control flow. Every attempt is
bounded by its own timeout and every failure is captured as a tagged
``FailureReason``; nothing raised inside a tier escapes ``run``.

``HEURISTIC_BASELINE`` is not run here: the caller decides whether to fall
back when the returned outcome has no extraction.
"""
import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from entity_indexer.errors.exceptions import LLMTimeoutError
from entity_indexer.models.extraction import (
    CanonicalExtraction,
    CascadeOutcome,
    CascadeTier,
    ProductRef,
    TierAttempt,
)
from entity_indexer.models.product import Product
from entity_indexer.models.result import Err, FailureReason
from entity_indexer.services.extraction.json_recovery import (
    DEFAULT_SALVAGE_CAP,
    recover_json,
    salvage_entities,
)
from entity_indexer.services.extraction.validator import validate_extraction
from entity_indexer.services.llm.client import LLMClient, LLMRequest
from entity_indexer.services.llm.prompts import (
    MIN_SCHEMA,
    STRICT_JSON_HINT,
    TINY_JSON_HINT,
    TINY_SCHEMA,
    build_extraction_prompt,
)
from entity_indexer.services.normalization.text import (
    DEFAULT_TAG_CAP,
    normalize_product,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 14.0
DEFAULT_BACKOFF_SECONDS = 0.4
DEFAULT_BACKOFF_JITTER = 0.5

# Raw text kept per attempt for diagnostics; recovery and salvage see the whole reply
MAX_RAW_TEXT = 8000


@dataclass(frozen=True)
class AttemptStrategy:
    """One model attempt: input budget, output schema and corrective hint."""
    tier: CascadeTier
    description_cap: int
    schema: Optional[Dict[str, Any]] = None
    system_hint: Optional[str] = None


DEFAULT_STRATEGIES: List[AttemptStrategy] = [
    AttemptStrategy(CascadeTier.ATTEMPT_FULL, 900),
    AttemptStrategy(CascadeTier.ATTEMPT_MINIMAL, 600, MIN_SCHEMA, STRICT_JSON_HINT),
    AttemptStrategy(CascadeTier.ATTEMPT_TINY, 450, TINY_SCHEMA, TINY_JSON_HINT),
]


def strategies_with_caps(caps: Sequence[int]) -> List[AttemptStrategy]:
    """Default strategies with description budgets replaced by ``caps``."""
    if len(caps) != len(DEFAULT_STRATEGIES):
        raise ValueError(f"expected {len(DEFAULT_STRATEGIES)} description caps, got {len(caps)}")
    return [
        AttemptStrategy(s.tier, int(cap), s.schema, s.system_hint)
        for s, cap in zip(DEFAULT_STRATEGIES, caps)
    ]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class ExtractionCascade:
    """Runs the tiered extraction for one product at a time.

    Stateless between calls, so one instance can serve many concurrent
    ``run`` calls.
    """

    def __init__(
        self,
        client: LLMClient,
        strategies: Optional[Sequence[AttemptStrategy]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        backoff: float = DEFAULT_BACKOFF_SECONDS,
        jitter: float = DEFAULT_BACKOFF_JITTER,
        tag_cap: int = DEFAULT_TAG_CAP,
        salvage_cap: int = DEFAULT_SALVAGE_CAP,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.strategies = list(strategies or DEFAULT_STRATEGIES)
        self.timeout = timeout
        self.backoff = backoff
        self.jitter = jitter
        self.tag_cap = tag_cap
        self.salvage_cap = salvage_cap
        self._sleep = sleep

    async def _pause(self) -> None:
        if self.backoff <= 0:
            return
        spread = self.backoff * self.jitter
        await self._sleep(max(0.0, self.backoff + random.uniform(-spread, spread)))

    async def attempt(self, product: Product, strategy: AttemptStrategy) -> TierAttempt:
        """Run one call/recover/validate attempt and record how it went."""
        started = time.perf_counter()
        normalized = normalize_product(product, cap=strategy.description_cap, tag_cap=self.tag_cap)
        request = LLMRequest(
            prompt=build_extraction_prompt(normalized, strategy.schema, strategy.system_hint),
            response_schema=strategy.schema,
            system_hint=strategy.system_hint,
        )

        try:
            response = await asyncio.wait_for(self.client.generate(request), timeout=self.timeout)
        except (asyncio.TimeoutError, LLMTimeoutError) as e:
            return TierAttempt(
                tier=strategy.tier,
                ok=False,
                elapsed_ms=_elapsed_ms(started),
                reason=FailureReason.TIMEOUT,
                errors=[str(e) or "timed out"],
            )
        except Exception as e:
            return TierAttempt(
                tier=strategy.tier,
                ok=False,
                elapsed_ms=_elapsed_ms(started),
                reason=FailureReason.ERROR,
                errors=[f"{type(e).__name__}: {e}"],
            )

        response_text = response.content or ""
        raw_text = response_text[:MAX_RAW_TEXT]
        parsed = recover_json(response_text)
        if isinstance(parsed, Err):
            return TierAttempt(
                tier=strategy.tier,
                ok=False,
                elapsed_ms=_elapsed_ms(started),
                reason=parsed.reason,
                errors=parsed.errors,
                raw_text=raw_text,
                response_text=response_text,
            )

        validated = validate_extraction(parsed.value, product.id)
        if isinstance(validated, Err):
            return TierAttempt(
                tier=strategy.tier,
                ok=False,
                elapsed_ms=_elapsed_ms(started),
                reason=validated.reason,
                errors=validated.errors,
                raw_text=raw_text,
                response_text=response_text,
            )

        return TierAttempt(
            tier=strategy.tier,
            ok=True,
            elapsed_ms=_elapsed_ms(started),
            raw_text=raw_text,
            extraction=validated.value,
            response_text=response_text,
        )

    async def run(self, product: Product) -> CascadeOutcome:
        """Run the tiers in order and stop at the first validated result.

        Returns:
            CascadeOutcome; ``extraction`` is None when every tier and
            salvage failed
        """
        started = time.perf_counter()
        log = logger.bind(product_id=product.id)
        outcome = CascadeOutcome(product_id=product.id)

        for index, strategy in enumerate(self.strategies):
            if index:
                await self._pause()
            attempt = await self.attempt(product, strategy)
            outcome.attempts.append(attempt)
            if attempt.ok:
                outcome.extraction = attempt.extraction
                outcome.tier = strategy.tier
                break
            log.info(
                "cascade_tier_failed",
                tier=strategy.tier.value,
                reason=attempt.reason.value if attempt.reason else None,
                elapsed_ms=attempt.elapsed_ms,
                errors=attempt.errors[:3],
            )
        else:
            salvaged = salvage_entities(outcome.best_raw_text, cap=self.salvage_cap)
            if salvaged:
                outcome.extraction = CanonicalExtraction(
                    product=ProductRef(id=product.id),
                    entities=salvaged,
                )
                outcome.tier = CascadeTier.SALVAGE
                log.info("cascade_salvaged", entities=len(salvaged))

        outcome.elapsed_ms = _elapsed_ms(started)
        log.debug(
            "cascade_finished",
            tier=outcome.tier.value if outcome.tier else None,
            elapsed_ms=outcome.elapsed_ms,
            failures=outcome.failures,
        )
        return outcome
