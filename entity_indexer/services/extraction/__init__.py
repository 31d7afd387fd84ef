"""Extraction: JSON recovery, output validation, the tiered cascade and
the model-free baseline."""
from entity_indexer.services.extraction.json_recovery import (
    recover_json,
    repair_json,
    salvage_entities,
)
from entity_indexer.services.extraction.validator import validate_extraction
from entity_indexer.services.extraction.heuristics import baseline_extract
from entity_indexer.services.extraction.cascade import (
    AttemptStrategy,
    DEFAULT_STRATEGIES,
    ExtractionCascade,
    strategies_with_caps,
)

__all__ = [
    "recover_json",
    "repair_json",
    "salvage_entities",
    "validate_extraction",
    "baseline_extract",
    "AttemptStrategy",
    "DEFAULT_STRATEGIES",
    "ExtractionCascade",
    "strategies_with_caps",
]
