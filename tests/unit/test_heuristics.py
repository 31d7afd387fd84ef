"""Unit tests for the model-free baseline extractor."""
from entity_indexer.services.extraction.heuristics import baseline_extract
from entity_indexer.services.normalization.text import normalize_product

from tests.helpers import make_product


def _extract(**overrides):
    return baseline_extract(normalize_product(make_product(**overrides)))


class TestBaselineExtract:
    """Test labelled lists and unit values."""

    def test_ingredient_list(self):
        """A labelled ingredient list becomes ingredient entities."""
        result = _extract(description="<p>Ingredients: Niacinamide, Zinc PCA</p>")
        assert result.product.id == "p1"
        assert [(e.name, e.type) for e in result.entities] == [
            ("Niacinamide", "ingredient"),
            ("Zinc PCA", "ingredient"),
        ]
        assert result.flags == []

    def test_no_markers_yields_nothing(self):
        """Plain prose without labels or units produces no entities."""
        result = _extract(description="Rich cream for dry skin.", tags=["skincare", "night"])
        assert result.entities == []
        assert result.specs == []

    def test_unit_values(self):
        """Wh and W values become specs and spec entities."""
        result = _extract(
            title="Camping Power Station",
            description="Portable station with 504 Wh battery and 300 W output.",
            tags=[],
        )
        specs = {(s.name, s.value, s.unit) for s in result.specs}
        assert specs == {("battery", 504.0, "Wh"), ("power", 300.0, "W")}
        assert [(e.name, e.type) for e in result.entities] == [
            ("Battery (Wh)", "spec"),
            ("Power", "spec"),
        ]

    def test_mah_and_volume(self):
        result = _extract(description="Power bank 10000 mAh, bottle 500 ml", tags=[])
        specs = {(s.name, s.value, s.unit) for s in result.specs}
        assert specs == {("battery", 10000.0, "mAh"), ("volume", 500.0, "ml")}

    def test_list_stops_at_sentence_end(self):
        """Parts after the first sentence and parts starting with a digit are skipped."""
        result = _extract(description="Components: 12V motor, steel frame. Made in Italy", tags=[])
        assert [e.name for e in result.entities] == ["steel frame"]

    def test_list_from_tags(self):
        """Tags are scanned along with the description."""
        result = _extract(description="", tags=["Ingredients: aloe vera"])
        assert [e.name for e in result.entities] == ["aloe vera"]

    def test_duplicates_collapse_on_slug(self):
        result = _extract(description="Ingredients: Aloe Vera, aloe-vera, Shea Butter", tags=[])
        assert [e.name for e in result.entities] == ["Aloe Vera", "Shea Butter"]

    def test_list_items_capped(self):
        names = ", ".join(f"Extract {chr(65 + i)}" for i in range(26))
        result = _extract(description=f"Ingredients: {names}", tags=[])
        assert len(result.entities) == 20
