"""
Unit tests for the field synonym dictionary.
"""
import pytest

from ingest.field_synonyms import (
    CANONICAL_FIELDS,
    EXACT_MATCH_CONFIDENCE,
    NORMALIZED_MATCH_CONFIDENCE,
    get_synonyms,
    is_canonical_field,
    normalize_header,
    resolve_header,
    score_header,
)


class TestNormalizeHeader:
    """Header normalization."""

    def test_lowercase_and_spaces(self):
        assert normalize_header("  Load   No ") == "load no"

    def test_symbols_dropped(self):
        assert normalize_header("State/ Province") == "state province"
        assert normalize_header("LOAD_NO") == "load no"

    def test_hash_becomes_no(self):
        assert normalize_header("Load #") == "load no"

    def test_none(self):
        assert normalize_header(None) == ""


class TestResolveHeader:
    """Resolution of raw headers to canonical fields."""

    @pytest.mark.parametrize("header,field", [
        ("Load No", "loadNumber"),
        ("Ship To Customer Name", "shipToCustomer"),
        ("Address Line 1 and 2", "shipToAddress"),
        ("Customer PO Number", "poNumber"),
        ("Promised Ship Date", "promisedShipDate"),
        ("2nd Item Number", "itemNumber"),
    ])
    def test_exact_synonyms(self, header, field):
        match = resolve_header(header)
        assert match.field == field
        assert match.confidence == EXACT_MATCH_CONFIDENCE

    @pytest.mark.parametrize("header", ["LOAD NO", "load no", "Load no"])
    def test_case_variants_score_as_normalized(self, header):
        match = resolve_header(header)
        assert match.field == "loadNumber"
        assert match.confidence == NORMALIZED_MATCH_CONFIDENCE
        assert score_header(header, "loadNumber") == NORMALIZED_MATCH_CONFIDENCE

    def test_normalized_match(self):
        match = resolve_header("load_no")
        assert match.field == "loadNumber"
        assert match.confidence == NORMALIZED_MATCH_CONFIDENCE

    def test_canonical_name_is_accepted(self):
        match = resolve_header("shipToCustomer")
        assert match.field == "shipToCustomer"
        assert match.confidence == EXACT_MATCH_CONFIDENCE

    def test_fuzzy_match_scores_below_normalized(self):
        match = resolve_header("Promised Shipdate")
        assert match.field == "promisedShipDate"
        assert 0 < match.confidence < NORMALIZED_MATCH_CONFIDENCE

    def test_empty_header(self):
        assert resolve_header("") is None
        assert resolve_header("   ") is None
        assert resolve_header(None) is None


class TestScoreHeader:
    """Per-field scores."""

    def test_score_bounds(self):
        for field in CANONICAL_FIELDS:
            score = score_header("Some Unrelated Column", field)
            assert 0.0 <= score <= 1.0

    def test_unknown_field(self):
        assert score_header("Load No", "notAField") == 0.0

    def test_exact_score(self):
        assert score_header("ETD", "promisedShipDate") == EXACT_MATCH_CONFIDENCE


class TestSynonymLookup:

    def test_get_synonyms(self):
        assert "Load No" in get_synonyms("loadNumber")
        assert get_synonyms("notAField") == frozenset()

    def test_is_canonical_field(self):
        assert is_canonical_field("totalWeight")
        assert not is_canonical_field("Total Weight")
