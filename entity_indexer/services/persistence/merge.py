"""Field-wise merge applied at the persistence boundary.

Every field of a merged document has one declared strategy; stores apply
the policy generically instead of special-casing fields at call sites.

    OVERWRITE     incoming value replaces the stored one (last write wins)
    ADDITIVE_SET  stored list keeps its order, unseen incoming values append
    MAX           larger of stored and incoming
    KEEP_NONEMPTY incoming value replaces the stored one unless it is empty
    RANKED        incoming value replaces the stored one unless the stored
                  value ranks higher in the policy's ranking for the field

With these strategies two writers touching the same document converge to
the same state whichever commits first, apart from scalar fields.
"""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple

from entity_indexer.errors.exceptions import MergeConflictError


class FieldStrategy(str, Enum):
    OVERWRITE = "overwrite"
    ADDITIVE_SET = "additive_set"
    MAX = "max"
    KEEP_NONEMPTY = "keep_nonempty"
    RANKED = "ranked"


@dataclass(frozen=True)
class MergePolicy:
    """Per-field strategies; fields not listed use ``default``.

    ``rankings`` orders the values of each RANKED field from lowest to
    highest.
    """
    fields: Dict[str, FieldStrategy] = field(default_factory=dict)
    default: FieldStrategy = FieldStrategy.OVERWRITE
    rankings: Dict[str, Tuple[Any, ...]] = field(default_factory=dict)

    def strategy_for(self, name: str) -> FieldStrategy:
        return self.fields.get(name, self.default)

    def overwriting(self, name: str) -> "MergePolicy":
        """Copy of this policy with ``name`` downgraded to OVERWRITE."""
        fields = dict(self.fields)
        fields[name] = FieldStrategy.OVERWRITE
        return MergePolicy(fields=fields, default=self.default, rankings=self.rankings)


OVERWRITE_POLICY = MergePolicy()

# A stub (heuristic) write never downgrades an entity a model described
ENTITY_STATUS_RANKING: Tuple[str, ...] = ("stub", "llm")

ENTITY_MERGE_POLICY = MergePolicy(
    fields={
        "examples": FieldStrategy.ADDITIVE_SET,
        "confidence": FieldStrategy.MAX,
        "synonyms": FieldStrategy.KEEP_NONEMPTY,
        "fact": FieldStrategy.KEEP_NONEMPTY,
        "cautions": FieldStrategy.KEEP_NONEMPTY,
        "status": FieldStrategy.RANKED,
    },
    rankings={"status": ENTITY_STATUS_RANKING},
)


@dataclass
class WriteOp:
    """One document write inside an atomic batch.

    ``replace`` stores ``data`` as the whole document; ``merge`` folds it
    into the stored document with ``policy``.
    """
    path: str
    data: Dict[str, Any]
    mode: Literal["replace", "merge"] = "merge"
    policy: MergePolicy = OVERWRITE_POLICY


def _union(path: str, name: str, existing: Any, incoming: Any) -> list:
    if not isinstance(existing, list):
        raise MergeConflictError(path, name)
    merged = list(existing)
    values = incoming if isinstance(incoming, list) else [incoming]
    for value in values:
        if value not in merged:
            merged.append(value)
    return merged


def _max(existing: Any, incoming: Any) -> Any:
    if isinstance(existing, (int, float)) and not isinstance(existing, bool):
        if isinstance(incoming, (int, float)) and not isinstance(incoming, bool):
            return max(existing, incoming)
    return incoming


def _is_empty(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value is None or value == [] or value == {}


def _ranked(ranking: Tuple[Any, ...], existing: Any, incoming: Any) -> Any:
    # Values outside the ranking never block an update
    if existing in ranking and incoming in ranking:
        if ranking.index(existing) > ranking.index(incoming):
            return existing
    return incoming


def merge_document(
    existing: Optional[Dict[str, Any]],
    incoming: Dict[str, Any],
    policy: MergePolicy = OVERWRITE_POLICY,
    path: str = "",
) -> Dict[str, Any]:
    """Merge ``incoming`` into ``existing`` according to ``policy``.

    Fields only present in ``existing`` are kept. Neither input is mutated.

    Raises:
        MergeConflictError: If an ADDITIVE_SET field is stored as a non-list
    """
    merged = copy.deepcopy(existing) if existing else {}
    for name, value in incoming.items():
        strategy = policy.strategy_for(name)
        if name not in merged or merged[name] is None or strategy == FieldStrategy.OVERWRITE:
            if strategy == FieldStrategy.ADDITIVE_SET and not isinstance(value, list):
                value = [value]
            merged[name] = copy.deepcopy(value)
        elif strategy == FieldStrategy.ADDITIVE_SET:
            merged[name] = _union(path, name, merged[name], value)
        elif strategy == FieldStrategy.MAX:
            merged[name] = _max(merged[name], value)
        elif strategy == FieldStrategy.KEEP_NONEMPTY:
            if not _is_empty(value):
                merged[name] = copy.deepcopy(value)
        elif strategy == FieldStrategy.RANKED:
            merged[name] = _ranked(policy.rankings.get(name, ()), merged[name], value)
    return merged


def apply_op(existing: Optional[Dict[str, Any]], op: WriteOp) -> Dict[str, Any]:
    """New stored state for one WriteOp."""
    if op.mode == "replace":
        return copy.deepcopy(op.data)
    return merge_document(existing, op.data, op.policy, op.path)
