"""
Unit tests for the heuristic header mapper.
"""
from ingest.header_mapper import POSITIONAL_LAYOUT, HeaderMapper, positional_mappings
from ingest.types import MISC_FIELD


class TestHeaderMapper:
    """Synonym scores + one-to-one assignment."""

    def test_maps_known_headers(self):
        result = HeaderMapper().map_headers(["Load No", "Order Number", "Customer", "Total Weight"])

        assert result.field_for("Load No") == "loadNumber"
        assert result.field_for("Order Number") == "orderNumber"
        assert result.field_for("Customer") == "shipToCustomer"
        assert result.field_for("Total Weight") == "totalWeight"
        assert result.unresolved == []
        assert all(m.source == "heuristic" for m in result.mappings.values())

    def test_unknown_header_is_unresolved(self):
        result = HeaderMapper().map_headers(["Load No", "Xyzzy Reference"])

        assert result.field_for("Load No") == "loadNumber"
        assert "Xyzzy Reference" in result.unresolved
        assert "Xyzzy Reference" not in result.mappings

    def test_each_field_claimed_once(self):
        # Both denote the customer; the exact synonym wins
        result = HeaderMapper().map_headers(["Customer", "Customer Name"])

        fields = [m.canonical_field for m in result.mappings.values() if m.canonical_field != MISC_FIELD]
        assert fields.count("shipToCustomer") == 1

    def test_loser_goes_to_miscellaneous_not_ai(self):
        result = HeaderMapper().map_headers(["Customer", "Customer Name"])

        loser = "Customer Name" if result.field_for("Customer") == "shipToCustomer" else "Customer"
        assert result.field_for(loser) == MISC_FIELD
        assert loser not in result.unresolved

    def test_manual_override_wins(self):
        result = HeaderMapper().map_headers(
            ["Ref", "Load No"],
            manual_overrides={"Ref": "orderNumber"},
        )

        mapping = result.mappings["Ref"]
        assert mapping.canonical_field == "orderNumber"
        assert mapping.confidence == 1.0
        assert mapping.source == "manual"
        assert result.field_for("Load No") == "loadNumber"

    def test_manual_override_claims_field(self):
        result = HeaderMapper().map_headers(
            ["Consignee Ref", "Load No"],
            manual_overrides={"Consignee Ref": "loadNumber"},
        )

        assert result.field_for("Consignee Ref") == "loadNumber"
        assert result.field_for("Load No") != "loadNumber"

    def test_manual_override_unknown_field_ignored(self):
        result = HeaderMapper().map_headers(["Load No"], manual_overrides={"Load No": "bogus"})

        assert result.field_for("Load No") == "loadNumber"
        assert result.mappings["Load No"].source == "heuristic"

    def test_threshold(self):
        strict = HeaderMapper(acceptance_threshold=0.99).map_headers(["load_no"])
        lenient = HeaderMapper(acceptance_threshold=0.9).map_headers(["load_no"])

        assert strict.unresolved == ["load_no"]
        assert lenient.field_for("load_no") == "loadNumber"

    def test_header_for(self):
        result = HeaderMapper().map_headers(["ETD", "Consignee"])

        assert result.header_for("promisedShipDate") == "ETD"
        assert result.header_for("shipToCustomer") == "Consignee"
        assert result.header_for("remarks") is None


class TestPositionalMappings:

    def test_layout(self):
        result = positional_mappings(3, confidence=0.5)

        assert list(result.mappings) == ["column_1", "column_2", "column_3"]
        assert result.field_for("column_1") == POSITIONAL_LAYOUT[0]
        assert all(m.confidence == 0.5 for m in result.mappings.values())

    def test_extra_columns_are_miscellaneous(self):
        result = positional_mappings(len(POSITIONAL_LAYOUT) + 2)

        assert result.field_for(f"column_{len(POSITIONAL_LAYOUT) + 1}") == MISC_FIELD
