"""Models for the extraction cascade output.

``CanonicalExtraction`` is the validated shape every successful path
produces (model tiers, salvage and the heuristic baseline):
``{product: {id}, entities: [], specs: [], flags: []}``.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from entity_indexer.models.result import FailureReason


class ExtractedEntity(BaseModel):
    """Entity as emitted by the extractor, before slugging."""

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    synonyms: List[str] = Field(default_factory=list)
    evidence: List[str] = Field(default_factory=list)
    fact: str = ""
    cautions: str = ""


class ExtractedSpec(BaseModel):
    """Structured key/value spec (e.g. battery 504 Wh)."""

    name: str = Field(..., min_length=1)
    value: Optional[float] = None
    unit: str = ""


class ProductRef(BaseModel):
    id: str


class CanonicalExtraction(BaseModel):
    """Validated extraction result for one product."""

    product: ProductRef
    entities: List[ExtractedEntity] = Field(default_factory=list)
    specs: List[ExtractedSpec] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)


class CascadeTier(str, Enum):
    """States of the extraction cascade, in escalation order."""
    ATTEMPT_FULL = "attempt_full"
    ATTEMPT_MINIMAL = "attempt_minimal"
    ATTEMPT_TINY = "attempt_tiny"
    SALVAGE = "salvage"
    HEURISTIC_BASELINE = "heuristic_baseline"


# Confidence recorded on entities by the tier that produced them
TIER_CONFIDENCE: Dict[CascadeTier, float] = {
    CascadeTier.ATTEMPT_FULL: 0.8,
    CascadeTier.ATTEMPT_MINIMAL: 0.8,
    CascadeTier.ATTEMPT_TINY: 0.8,
    CascadeTier.SALVAGE: 0.5,
    CascadeTier.HEURISTIC_BASELINE: 0.3,
}


def is_model_tier(tier: CascadeTier) -> bool:
    """True when entities from this tier were derived from a model response."""
    return tier != CascadeTier.HEURISTIC_BASELINE


@dataclass
class TierAttempt:
    """Record of one model call made by the cascade.

    ``raw_text`` is the diagnostic copy of the reply, capped by the cascade;
    ``response_text`` is the whole reply, used for salvage.
    """
    tier: CascadeTier
    ok: bool
    elapsed_ms: int
    reason: Optional[FailureReason] = None
    errors: List[str] = field(default_factory=list)
    raw_text: str = ""
    extraction: Optional[CanonicalExtraction] = None
    response_text: str = field(default="", repr=False)

    def to_dict(self) -> Dict[str, object]:
        return {
            "tier": self.tier.value,
            "ok": self.ok,
            "reason": self.reason.value if self.reason else None,
            "errors": list(self.errors),
            "elapsed_ms": self.elapsed_ms,
            "response_chars": len(self.response_text),
        }


@dataclass
class CascadeOutcome:
    """Result of running the cascade for one product.

    ``tier`` is the state that produced ``extraction``; both are None when
    every tier and salvage failed and the caller must fall back to the
    heuristic baseline.
    """
    product_id: str
    extraction: Optional[CanonicalExtraction] = None
    tier: Optional[CascadeTier] = None
    attempts: List[TierAttempt] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.extraction is not None

    @property
    def reason(self) -> Optional[FailureReason]:
        """Failure reason of the last model attempt, if it failed."""
        for attempt in reversed(self.attempts):
            if not attempt.ok:
                return attempt.reason
        return None

    @property
    def failures(self) -> Dict[str, str]:
        """Tier name → failure reason for every failed attempt."""
        return {
            a.tier.value: a.reason.value
            for a in self.attempts
            if not a.ok and a.reason is not None
        }

    @property
    def best_raw_text(self) -> str:
        """Longest whole response seen across attempts (salvage input)."""
        return max((a.response_text for a in self.attempts), key=len, default="")
