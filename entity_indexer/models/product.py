"""Pydantic models for catalog product records.

Product documents come from the merchant catalog and are read-only to the
indexer. Catalog imports are not uniform, so the model accepts the common
aliases (``body_html``, ``name``, ``metafields``) and comma-separated tags.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, List


class Product(BaseModel):
    """Catalog product as stored under ``products/{merchant}/items``.

    Attributes:
        id: Product identifier (string form of the catalog id)
        title: Display title
        description: Description, may contain HTML markup
        tags: Free-form tag list
        specs: Specs/metafields map passed through to the prompt
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Catalog product id")
    title: str = Field(default="", description="Product title")
    description: str = Field(default="", description="Markup-bearing description")
    tags: List[str] = Field(default_factory=list, description="Product tags")
    specs: Dict[str, Any] = Field(default_factory=dict, description="Specs / metafields")

    @model_validator(mode="before")
    @classmethod
    def apply_catalog_aliases(cls, data: Any) -> Any:
        """Fold alternate catalog field names onto the canonical ones."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("title") and data.get("name"):
            data["title"] = data["name"]
        if not data.get("description") and data.get("body_html"):
            data["description"] = data["body_html"]
        if not data.get("specs") and isinstance(data.get("metafields"), dict):
            data["specs"] = data["metafields"]
        for key in ("title", "description"):
            if data.get(key) is None:
                data[key] = ""
        if data.get("specs") is None or not isinstance(data.get("specs"), dict):
            data["specs"] = {}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        """Numeric catalog ids are stored as strings."""
        if v is None:
            return v
        return str(v).strip()

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v: Any) -> List[str]:
        """Accept a list or a comma-separated string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        if isinstance(v, (list, tuple)):
            return [str(t).strip() for t in v if t is not None and str(t).strip()]
        return []


class NormalizedProduct(BaseModel):
    """Product text prepared for one extraction attempt.

    Never persisted. Recomputed per cascade tier with a smaller
    description budget on each escalation.
    """

    id: str
    title: str = ""
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)
