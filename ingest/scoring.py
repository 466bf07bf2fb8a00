"""
Confidence and completeness scoring for shipment bundles.

The score is a pure function of the bundle: recompute it after any manual
correction instead of storing it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from core.config import ProcessorConfig, get_config
from ingest.types import ParsedShipmentBundle, ShipmentConfidenceScore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: Tuple[str, ...] = (
    "loadNumber",
    "orderNumber",
    "promisedShipDate",
    "shipToCustomer",
    "items",
    "totalWeight",
)

OPTIONAL_FIELDS: Tuple[str, ...] = (
    "shipToAddress",
    "shipToState",
    "shipToArea",
    "contactName",
    "contactNumber",
    "poNumber",
    "requestDate",
    "expectedDeliveryDate",
    "pickupWarehouse",
    "remarks",
)

CRITICAL_FIELDS: Tuple[str, ...] = (
    "loadNumber",
    "orderNumber",
    "promisedShipDate",
    "shipToCustomer",
    "shipToAddress",
)

OPTIONAL_FIELD_WEIGHT = 0.5


@dataclass(frozen=True)
class ScoringSettings:
    critical_field_penalty: float = 0.2
    ai_low_confidence_th: float = 0.7
    ai_low_confidence_factor: float = 0.9
    confidence_weight: float = 0.7
    completeness_weight: float = 0.3
    review_threshold: float = 0.75
    min_confidence: float = 0.1
    max_confidence: float = 1.0

    @classmethod
    def from_config(cls, config: Optional[ProcessorConfig] = None) -> "ScoringSettings":
        config = config or get_config()
        return cls(
            critical_field_penalty=config.critical_field_penalty,
            ai_low_confidence_th=config.ai_low_confidence_th,
            ai_low_confidence_factor=config.ai_low_confidence_factor,
            confidence_weight=config.confidence_weight,
            completeness_weight=config.completeness_weight,
            review_threshold=config.review_threshold,
            min_confidence=config.min_confidence,
            max_confidence=config.max_confidence,
        )


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def calculate_completeness(bundle: ParsedShipmentBundle) -> float:
    """Share of required fields present, optional fields counted at half weight."""
    values = bundle.field_values()
    required_present = sum(1 for f in REQUIRED_FIELDS if _has_value(values.get(f)))
    optional_present = sum(1 for f in OPTIONAL_FIELDS if _has_value(values.get(f)))
    total = len(REQUIRED_FIELDS) + OPTIONAL_FIELD_WEIGHT * len(OPTIONAL_FIELDS)
    return (required_present + OPTIONAL_FIELD_WEIGHT * optional_present) / total


def calculate_confidence(
    bundle: ParsedShipmentBundle,
    settings: Optional[ScoringSettings] = None,
) -> ShipmentConfidenceScore:
    """
    Score a bundle.

    confidence starts at 1.0, loses critical_field_penalty per missing
    critical field, is multiplied by ai_low_confidence_factor when an
    AI-mapped field is below ai_low_confidence_th, then blended with
    completeness and clamped to [min_confidence, max_confidence].

    Args:
        bundle: Bundle to score (may be completely empty)
        settings: Scoring constants (configuration when None)

    Returns:
        ShipmentConfidenceScore
    """
    settings = settings or ScoringSettings.from_config()
    values = bundle.field_values()

    missing_critical = [f for f in CRITICAL_FIELDS if not _has_value(values.get(f))]
    low_confidence_ai = [
        m for m in bundle.metadata.ai_mapped_fields
        if m.confidence < settings.ai_low_confidence_th
    ]

    confidence = 1.0 - settings.critical_field_penalty * len(missing_critical)
    if low_confidence_ai:
        confidence *= settings.ai_low_confidence_factor

    completeness = calculate_completeness(bundle)
    blended = settings.confidence_weight * confidence + settings.completeness_weight * completeness
    final = max(settings.min_confidence, min(settings.max_confidence, blended))

    needs_review = bool(missing_critical) or bool(low_confidence_ai) or final < settings.review_threshold

    if missing_critical:
        message = f"Missing critical fields: {', '.join(missing_critical)}"
    elif low_confidence_ai:
        fields = ", ".join(m.canonical_field for m in low_confidence_ai)
        message = f"Low-confidence AI mappings: {fields}"
    elif needs_review:
        message = f"Overall confidence {final:.2f} below review threshold {settings.review_threshold:.2f}"
    else:
        message = "All critical fields present"

    return ShipmentConfidenceScore(
        confidence=round(final, 4),
        needs_review=needs_review,
        message=message,
        completeness=round(completeness, 4),
        missing_critical_fields=missing_critical,
    )
