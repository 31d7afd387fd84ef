"""Prompt templates for catalog entity extraction.

The builder is deterministic: identical inputs render byte-identical
prompts (product input is serialized with sorted keys).
"""
import copy
import json
from typing import Any, Dict, Optional

from entity_indexer.models.product import NormalizedProduct

ENTITY_TYPES = [
    "ingredient",
    "material",
    "feature",
    "spec",
    "nutrient",
    "component",
    "standard",
    "care",
]

# Response schemas in the Gemini REST subset (also valid Ollama format hints)
MIN_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "product": {
            "type": "OBJECT",
            "properties": {"id": {"type": "STRING"}},
            "required": ["id"],
        },
        "entities": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "type": {"type": "STRING"},
                    "synonyms": {"type": "ARRAY", "items": {"type": "STRING"}},
                    "fact": {"type": "STRING"},
                    "cautions": {"type": "STRING"},
                },
                "required": ["name", "type"],
            },
        },
        "specs": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "value": {"type": "NUMBER"},
                    "unit": {"type": "STRING"},
                },
                "required": ["name"],
            },
        },
        "flags": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["product", "entities", "specs", "flags"],
}

TINY_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "product": {
            "type": "OBJECT",
            "properties": {"id": {"type": "STRING"}},
            "required": ["id"],
        },
        "entities": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {"name": {"type": "STRING"}, "type": {"type": "STRING"}},
                "required": ["name", "type"],
            },
        },
    },
    "required": ["product", "entities"],
}

STRICT_JSON_HINT = (
    "Output STRICT JSON matching the provided schema. "
    "Use double quotes, no comments, no trailing commas."
)
TINY_JSON_HINT = "Output STRICT JSON matching the schema only. No extra fields."

STRICT_FORMAT_RULES = """FORMAT RULES (mandatory):
- Output one JSON object and nothing else.
- Every key and every string value in double quotes.
- No comments, no trailing commas, no markdown fences."""

_FULL_EXAMPLE = {
    "product": {"id": "<product id>"},
    "entities": [
        {
            "name": "Hyaluronic Acid",
            "type": "ingredient",
            "synonyms": ["HA", "sodium hyaluronate"],
            "evidence": ["short snippet 1", "short snippet 2"],
            "fact": "Humectant that draws and holds water.",
            "cautions": "Layer under a moisturiser.",
        }
    ],
    "specs": [{"name": "battery", "value": 504, "unit": "Wh"}],
    "flags": ["vegan", "fragrance-free"],
}


def _entity_fields(schema: Optional[Dict[str, Any]]) -> Optional[list]:
    """Entity property names declared by a schema, if it declares any."""
    if not schema:
        return None
    items = schema.get("properties", {}).get("entities", {}).get("items", {})
    props = items.get("properties")
    return list(props) if props else None


def _example_for(product_id: str, schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    example = copy.deepcopy(_FULL_EXAMPLE)
    example["product"]["id"] = product_id
    fields = _entity_fields(schema)
    if fields is not None:
        example["entities"] = [
            {k: v for k, v in e.items() if k in fields} for e in example["entities"]
        ]
        top = schema.get("properties", {}) if schema else {}
        example = {k: v for k, v in example.items() if k in top}
    return example


def build_extraction_prompt(
    product: NormalizedProduct,
    schema: Optional[Dict[str, Any]] = None,
    system_hint: Optional[str] = None,
) -> str:
    """Render the entity extraction prompt for one product.

    Args:
        product: Normalized product (description already capped)
        schema: Optional response schema; adds strict formatting rules and
            narrows the example to the schema's fields
        system_hint: Optional corrective instruction placed first

    Returns:
        Prompt string
    """
    compact = {
        "id": product.id,
        "title": product.title,
        "description": product.description,
        "tags": product.tags,
        "specs": product.specs,
    }
    fields = _entity_fields(schema)
    names_only = fields is not None and "fact" not in fields

    lines = []
    if system_hint:
        lines += [system_hint, ""]
    lines += [
        "You are a catalog indexer extracting factual, catalog-native entities from a product.",
        "Use only the product text provided. Do not use outside knowledge or web sources.",
        "",
        "Return STRICT JSON only (no markdown, no backticks).",
        "Extract:",
        "- entities[]: things explicitly present in text/specs, each with:",
        "  - name (normalized common term)",
        f"  - type: one of {json.dumps(ENTITY_TYPES)}",
    ]
    if not names_only:
        lines += [
            "  - synonyms[] (only if present in the text; keep short)",
            "  - evidence[]: up to 2 short snippets copied from this product that justify the entity",
            "  - fact: one short, neutral sentence true in general (no medical claims); empty if unsure",
            "  - cautions: optional very short general caution (empty if none)",
            "- specs[]: structured key/values from obvious specifications; numeric value where sensible",
            "- flags[]: short labels present in text (e.g. \"vegan\", \"spf\", \"hydraulic-disc-brakes\")",
        ]
    lines += [
        "",
        "Rules:",
        "- Do not invent. Only extract what the text/specs/tags directly suggest.",
        "- Keep everything concise; trim long wording.",
        "- If nothing is present, return empty arrays.",
        "",
        "PRODUCT INPUT:",
        json.dumps(compact, indent=2, sort_keys=True, ensure_ascii=False, default=str),
        "",
        "EXPECTED JSON:",
        json.dumps(_example_for(product.id, schema), indent=2, ensure_ascii=False),
    ]
    if schema:
        lines += [
            "",
            STRICT_FORMAT_RULES,
            "",
            "RESPONSE SCHEMA:",
            json.dumps(schema, sort_keys=True, separators=(",", ":")),
        ]
    return "\n".join(lines).strip()
