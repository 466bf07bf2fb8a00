"""
Validation and review flagging.

Pydantic models guard the boundaries with the AI service; hard rules run
on every bundle and are combined with the confidence score into the final
review decision.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ingest.scoring import ScoringSettings, calculate_confidence
from ingest.types import ParsedShipmentBundle, ShipmentConfidenceScore

logger = logging.getLogger(__name__)


class AIMappingResponse(BaseModel):
    """Answer of the field mapping model: exactly {field, confidence}."""

    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., min_length=1, description="Canonical field name or 'unknown'")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Model confidence")

    @field_validator('field')
    @classmethod
    def validate_field(cls, v: str) -> str:
        return v.strip()


class OCRShipmentModel(BaseModel):
    """
    One shipment recovered from an image.

    Keys are canonical field names; anything else lands in the
    miscellaneous bucket when the bundle is built.
    """

    model_config = ConfigDict(extra="allow")

    loadNumber: Optional[str] = None
    orderNumber: Optional[str] = None
    shipToCustomer: Optional[str] = None
    shipToAddress: Optional[str] = None
    promisedShipDate: Optional[str] = None

    @field_validator('loadNumber', 'orderNumber', 'shipToCustomer', 'shipToAddress', 'promisedShipDate', mode='before')
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def to_row(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class OCRExtractionPayload(BaseModel):
    """Structured answer of the OCR passes."""

    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = Field(None, description="Raw text read from the document")
    shipments: List[OCRShipmentModel] = Field(default_factory=list)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v: Any) -> Optional[float]:
        if v is None:
            return None
        try:
            return max(0.0, min(1.0, float(v)))
        except (TypeError, ValueError):
            return None


@dataclass
class ReviewVerdict:
    score: ShipmentConfidenceScore
    validation_errors: List[str] = field(default_factory=list)
    needs_review: bool = False


def validate_bundle(bundle: ParsedShipmentBundle) -> List[str]:
    """
    Hard validation rules, independent of the confidence score.

    Returns:
        Human-readable validation messages (empty when the bundle is clean)
    """
    errors: List[str] = []
    values = bundle.field_values()

    if not values.get("loadNumber"):
        errors.append("Load number is missing")
    if not values.get("shipToCustomer"):
        errors.append("Ship-to customer is missing")
    if not values.get("shipToAddress"):
        errors.append("Destination address is missing")

    promised = bundle.base.promised_ship_date
    requested = bundle.base.request_date
    if promised and requested and promised < requested:
        errors.append(
            f"Promised ship date {promised.date().isoformat()} is before request date {requested.date().isoformat()}"
        )

    for i, item in enumerate(bundle.items, start=1):
        if item.quantity is not None and item.quantity < 0:
            errors.append(f"Item {i} has a negative quantity ({item.quantity:g})")
        if item.weight is not None and item.weight < 0:
            errors.append(f"Item {i} has a negative weight ({item.weight:g})")
    if bundle.base.total_weight is not None and bundle.base.total_weight < 0:
        errors.append(f"Total weight is negative ({bundle.base.total_weight:g})")

    if bundle.metadata.processing_errors:
        errors.append("Row had processing errors during extraction")
    if bundle.metadata.positional_mapping:
        errors.append("Columns were mapped by position (no header row); verify column order")
    if bundle.metadata.contact_po_swapped:
        errors.append("Contact and PO numbers were swapped between columns; verify both")

    return errors


def review_bundle(
    bundle: ParsedShipmentBundle,
    settings: Optional[ScoringSettings] = None,
) -> ReviewVerdict:
    """
    Combine confidence scoring and hard validation into one verdict.

    Args:
        bundle: Bundle to review
        settings: Scoring constants (configuration when None)

    Returns:
        ReviewVerdict; needs_review is the union of both checks
    """
    score = calculate_confidence(bundle, settings)
    errors = validate_bundle(bundle)
    needs_review = score.needs_review or bool(errors)
    return ReviewVerdict(score=score, validation_errors=errors, needs_review=needs_review)


def apply_review(
    bundle: ParsedShipmentBundle,
    settings: Optional[ScoringSettings] = None,
) -> ReviewVerdict:
    """Review a bundle and record the verdict in its metadata."""
    verdict = review_bundle(bundle, settings)
    bundle.metadata.needs_review = verdict.needs_review
    bundle.metadata.validation_errors = verdict.validation_errors
    if verdict.needs_review:
        logger.debug(
            f"[VALIDATION] Row {bundle.source_info.row_index} flagged for review: "
            f"{verdict.score.message}; {len(verdict.validation_errors)} validation issue(s)"
        )
    return verdict
