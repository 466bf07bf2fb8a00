"""
Unit tests for confidence and completeness scoring.
"""
from datetime import datetime

import pytest

from ingest.scoring import CRITICAL_FIELDS, ScoringSettings, calculate_completeness, calculate_confidence
from ingest.types import (
    Address,
    BundleMetadata,
    Dropoff,
    FieldMapping,
    ParsedShipmentBundle,
    ShipmentBase,
    ShipmentItem,
)

SETTINGS = ScoringSettings()


def complete_bundle(**metadata) -> ParsedShipmentBundle:
    return ParsedShipmentBundle(
        base=ShipmentBase(
            load_number="L-1001",
            order_number="SO-5001",
            promised_ship_date=datetime(2023, 3, 15),
            total_weight=1250.5,
        ),
        destination_address=Address(raw="12 Harbour Rd"),
        dropoff=Dropoff(customer_name="Acme Trading", address=Address(raw="12 Harbour Rd")),
        items=[ShipmentItem(item_number="SKU-1", quantity=10)],
        metadata=BundleMetadata(**metadata),
    )


class TestCalculateConfidence:

    def test_empty_bundle(self):
        score = calculate_confidence(ParsedShipmentBundle(), SETTINGS)

        assert score.confidence == SETTINGS.min_confidence
        assert score.needs_review
        assert score.completeness == 0.0
        assert set(score.missing_critical_fields) == set(CRITICAL_FIELDS)

    def test_complete_bundle(self):
        score = calculate_confidence(complete_bundle(), SETTINGS)

        assert not score.needs_review
        assert score.missing_critical_fields == []
        assert SETTINGS.review_threshold <= score.confidence <= SETTINGS.max_confidence
        assert score.message == "All critical fields present"

    def test_missing_critical_field_forces_review(self):
        bundle = complete_bundle()
        bundle.base.load_number = None

        score = calculate_confidence(bundle, SETTINGS)

        assert score.needs_review
        assert score.missing_critical_fields == ["loadNumber"]
        assert "loadNumber" in score.message

    def test_penalty_per_missing_field(self):
        one_missing = complete_bundle()
        one_missing.base.order_number = None
        two_missing = complete_bundle()
        two_missing.base.order_number = None
        two_missing.base.promised_ship_date = None

        assert calculate_confidence(two_missing, SETTINGS).confidence < \
            calculate_confidence(one_missing, SETTINGS).confidence

    def test_low_confidence_ai_mapping(self):
        low = FieldMapping("Consignee Ref", "loadNumber", 0.6, "ai")
        bundle = complete_bundle(ai_mapped_fields=[low], field_mappings_used=[low])

        score = calculate_confidence(bundle, SETTINGS)

        assert score.needs_review
        assert "Low-confidence AI" in score.message
        assert score.confidence < calculate_confidence(complete_bundle(), SETTINGS).confidence

    def test_high_confidence_ai_mapping(self):
        high = FieldMapping("Consignee Ref", "loadNumber", 0.95, "ai")
        score = calculate_confidence(complete_bundle(ai_mapped_fields=[high]), SETTINGS)

        assert not score.needs_review

    @pytest.mark.parametrize("bundle", [
        ParsedShipmentBundle(),
        complete_bundle(),
        ParsedShipmentBundle(base=ShipmentBase(load_number="L-1")),
    ])
    def test_bounds(self, bundle):
        score = calculate_confidence(bundle, SETTINGS)

        assert SETTINGS.min_confidence <= score.confidence <= SETTINGS.max_confidence
        assert 0.0 <= score.completeness <= 1.0

    def test_custom_settings(self):
        strict = ScoringSettings(review_threshold=0.99)

        assert calculate_confidence(complete_bundle(), strict).needs_review

    def test_settings_from_config(self, test_config):
        settings = ScoringSettings.from_config(test_config)

        assert settings.critical_field_penalty == test_config.critical_field_penalty
        assert settings.review_threshold == test_config.review_threshold


class TestCompleteness:

    def test_required_only(self):
        # 6 required present, 1 optional (shipToAddress) of 10 at half weight
        expected = (6 + 0.5) / (6 + 0.5 * 10)
        assert calculate_completeness(complete_bundle()) == pytest.approx(expected)

    def test_empty(self):
        assert calculate_completeness(ParsedShipmentBundle()) == 0.0
