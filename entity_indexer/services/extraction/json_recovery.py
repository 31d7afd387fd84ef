"""Tolerant JSON recovery for model output.

Model text is expected, not guaranteed, to be JSON. ``recover_json`` tries,
in order and stopping at the first success:

    1. strict parse of the whole text
    2. strict parse of the span between the first "{" and the last "}"
    3. repair pass over that span, then parse
    4. repair pass over the whole text, then parse

and returns ``Err(INVALID_JSON)`` when all four fail, so the cascade can
tell "the model can't follow the format" apart from other failures.

``salvage_entities`` is separate: it scans partial or truncated text for
complete ``"name": ..., "type": ...`` pairs. No repair can close a document
that was cut off by a token limit, but the entities before the cut are
still worth keeping.
"""
import json
import re
from typing import Any, List

import structlog

from entity_indexer.models.extraction import ExtractedEntity
from entity_indexer.models.result import Err, FailureReason, Ok, Result
from entity_indexer.services.normalization.text import slugify

logger = structlog.get_logger(__name__)

DEFAULT_SALVAGE_CAP = 24

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_SMART_DOUBLE_RE = re.compile("[“”„‟″‶]")
_SMART_SINGLE_RE = re.compile("[‘’‚‛′‵]")
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
# Skip "//" preceded by ":" so URLs inside strings survive
_LINE_COMMENT_RE = re.compile(r"(^|[^:])//.*$", re.MULTILINE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)")
_SINGLE_QUOTED_RE = re.compile(r"'([^'\\]*(?:\\.[^'\\]*)*)'")
_COLON_WS_RE = re.compile(r":\s+")

_SALVAGE_RE = re.compile(
    r'"name"\s*:\s*"([^"]{2,80})"\s*,\s*"type"\s*:\s*"([^"]{3,30})"',
    re.IGNORECASE,
)


def normalize_quotes(text: str) -> str:
    """Replace curly/smart quotes with straight ones."""
    text = _SMART_DOUBLE_RE.sub('"', text)
    return _SMART_SINGLE_RE.sub("'", text)


def _double_quote(match: "re.Match[str]") -> str:
    inner = match.group(1).replace("\\'", "'").replace('"', '\\"')
    return f'"{inner}"'


def repair_json(text: str) -> str:
    """Apply textual repairs for the usual ways models break JSON.

    Unwraps markdown fences, normalizes smart quotes, strips comments and
    trailing commas, quotes bare keys, converts single-quoted strings to
    double-quoted ones and collapses whitespace after colons.
    """
    s = str(text or "")
    fence = _FENCE_RE.search(s)
    if fence:
        s = fence.group(1)
    s = normalize_quotes(s).lstrip("\ufeff")
    s = _BLOCK_COMMENT_RE.sub("", s)
    s = _LINE_COMMENT_RE.sub(r"\1", s)
    s = _TRAILING_COMMA_RE.sub(r"\1", s)
    s = _BARE_KEY_RE.sub(r'\1"\2"\3', s)
    s = _SINGLE_QUOTED_RE.sub(_double_quote, s)
    s = _COLON_WS_RE.sub(": ", s)
    return s.strip()


def _brace_span(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start:end + 1]
    return ""


def recover_json(raw: str) -> Result[Any]:
    """Parse model output, repairing it if needed.

    Args:
        raw: Raw text returned by the LLM service

    Returns:
        Ok(parsed value) or Err(INVALID_JSON) listing each step's error
    """
    text = str(raw or "").strip()
    errors: List[str] = []

    try:
        return Ok(json.loads(text))
    except ValueError as e:
        errors.append(f"direct: {e}")

    body = _brace_span(text)
    if body:
        try:
            return Ok(json.loads(body))
        except ValueError as e:
            errors.append(f"braces: {e}")
        try:
            return Ok(json.loads(repair_json(body), strict=False))
        except ValueError as e:
            errors.append(f"repaired_braces: {e}")

    try:
        return Ok(json.loads(repair_json(text), strict=False))
    except ValueError as e:
        errors.append(f"repaired_all: {e}")

    logger.debug("json_recovery_failed", raw_preview=text[:120], steps=len(errors))
    return Err(FailureReason.INVALID_JSON, errors)


def salvage_entities(raw: str, cap: int = DEFAULT_SALVAGE_CAP) -> List[ExtractedEntity]:
    """Pull complete name/type pairs out of partial model output.

    Pairs are deduplicated on slug and type, types are lower-cased, and at
    most ``cap`` entities are returned.
    """
    found: List[ExtractedEntity] = []
    seen = set()
    for match in _SALVAGE_RE.finditer(normalize_quotes(str(raw or ""))):
        name = match.group(1).strip()
        entity_type = match.group(2).strip().lower()
        slug = slugify(name)
        if not slug or not entity_type:
            continue
        key = f"{slug}|{entity_type}"
        if key in seen:
            continue
        seen.add(key)
        found.append(ExtractedEntity(name=name, type=entity_type))
        if len(found) >= cap:
            break
    return found
