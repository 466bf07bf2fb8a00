"""
Field synonym dictionary and header resolver.

Maps raw spreadsheet headers onto canonical shipment fields:
- exact synonym match -> 1.0
- case/punctuation-insensitive match -> 0.95
- fuzzy or substring match -> scaled below 0.95

Pure functions, no external calls.
"""
import re
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple
from rapidfuzz import fuzz, process

logger = logging.getLogger(__name__)

EXACT_MATCH_CONFIDENCE = 1.0
NORMALIZED_MATCH_CONFIDENCE = 0.95
FUZZY_SCALE = 0.9

# Canonical field -> synonyms as they appear on logistics reports
FIELD_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    'loadNumber': ('Load No', 'Load Number', 'Load #', 'Load ID', 'Load'),
    'orderNumber': ('Order Number', 'Order No', 'Order #', 'Sales Order', 'SO Number', 'SO No'),
    'poNumber': ('Customer PO Number', 'PO Number', 'PO No', 'PO #', 'Purchase Order', 'Customer PO'),
    'status': ('Status', 'Shipment Status', 'Load Status', 'Delivery Status'),
    'promisedShipDate': ('Promised Ship Date', 'Promise Date', 'Ship Date', 'ETD', 'Planned Ship Date'),
    'requestDate': ('Request Date', 'Requested Date', 'Order Date', 'Request Ship Date'),
    'actualShipDate': ('Actual Ship Date', 'Shipped Date', 'Dispatch Date', 'ATD'),
    'expectedDeliveryDate': ('Expected Delivery Date', 'Delivery Date', 'ETA', 'Due Date'),
    'shipToCustomer': ('Ship To Customer Name', 'Ship To Customer', 'Customer Name', 'Customer', 'Consignee', 'Ship To Name'),
    'shipToAddress': ('Address Line 1 and 2', 'Ship To Address', 'Address', 'Delivery Address', 'Consignee Address'),
    'shipToCity': ('City', 'Ship To City', 'Town'),
    'shipToState': ('State/ Province', 'State', 'Province', 'Ship To State'),
    'shipToPostalCode': ('Postal Code', 'Postcode', 'Zip', 'Zip Code', 'Post Code'),
    'shipToArea': ('Ship To Area', 'Area', 'Region', 'Zone'),
    'contactName': ('Contact Name', 'Contact Person', 'PIC', 'Attention'),
    'contactNumber': ('Contact No', 'Contact Number', 'Phone', 'Phone Number', 'Tel', 'Mobile'),
    'pickupWarehouse': ('Warehouse', 'Pickup Warehouse', 'Branch Plant', 'Origin', 'Ship From'),
    'itemNumber': ('2nd Item Number', 'Item Number', 'Item No', 'Item', 'SKU', 'Part Number'),
    'description': ('Description 1', 'Description', 'Item Description', 'Product Description'),
    'lotSerialNumber': ('Lot Serial Number', 'Lot Number', 'Serial Number', 'Serial No', 'Lot No', 'Batch No'),
    'quantity': ('Quantity Ordered', 'Quantity', 'Qty', 'Qty Ordered', 'Quantity Shipped'),
    'uom': ('UOM', 'Unit of Measure', 'Unit'),
    'weight': ('Weight (KG)', 'Weight', 'Item Weight', 'Gross Weight'),
    'totalWeight': ('Total Weight', 'Total Weight (KG)', 'Total Gross Weight', 'Load Weight'),
    'remarks': ('Remark', 'Remarks', 'Notes', 'Note', 'Comment', 'Comments'),
    'carrierName': ('Carrier', 'Carrier Name', 'Transporter', 'Haulier'),
    'truckId': ('Truck No', 'Truck Number', 'Vehicle No', 'Plate Number', 'Lorry No'),
    'driverName': ('Driver', 'Driver Name'),
}

CANONICAL_FIELDS: Tuple[str, ...] = tuple(FIELD_SYNONYMS.keys())

DATE_FIELDS: FrozenSet[str] = frozenset({
    'promisedShipDate', 'requestDate', 'actualShipDate', 'expectedDeliveryDate'
})

ITEM_FIELDS: FrozenSet[str] = frozenset({
    'itemNumber', 'description', 'lotSerialNumber', 'quantity', 'uom', 'weight'
})


@dataclass(frozen=True)
class SynonymMatch:
    field: str
    confidence: float
    matched_synonym: str


def normalize_header(raw: str) -> str:
    """
    Normalize a header for matching: lowercase, strip, drop symbols, collapse spaces.

    Args:
        raw: Original header

    Returns:
        Normalized header
    """
    if raw is None:
        return ""
    normalized = str(raw).lower().strip()
    # Keep letters, digits and spaces; '#' becomes 'no'
    normalized = normalized.replace('#', ' no ')
    normalized = re.sub(r'[^\w\s]', ' ', normalized)
    normalized = normalized.replace('_', ' ')
    normalized = re.sub(r'\s+', ' ', normalized).strip()
    return normalized


def _build_indexes():
    exact: Dict[str, str] = {}
    normalized: Dict[str, str] = {}
    for canonical, synonyms in FIELD_SYNONYMS.items():
        for candidate in (canonical,) + synonyms:
            exact.setdefault(candidate, canonical)
            normalized.setdefault(normalize_header(candidate), canonical)
    return exact, normalized


_EXACT_INDEX, _NORMALIZED_INDEX = _build_indexes()

_NORMALIZED_SYNONYMS: Dict[str, List[str]] = {
    canonical: [normalize_header(s) for s in synonyms]
    for canonical, synonyms in FIELD_SYNONYMS.items()
}


def get_synonyms(field: str) -> FrozenSet[str]:
    """Synonyms registered for a canonical field (empty for unknown fields)."""
    return frozenset(FIELD_SYNONYMS.get(field, ()))


def is_canonical_field(field: str) -> bool:
    return field in FIELD_SYNONYMS


def _substring_score(header: str, synonym: str) -> float:
    if not header or not synonym or len(synonym) < 3:
        return 0.0
    if re.search(r'\b' + re.escape(synonym) + r'\b', header):
        return len(synonym) / len(header)
    return 0.0


def score_header(raw: str, field: str) -> float:
    """
    Confidence that a raw header denotes a canonical field.

    Args:
        raw: Original header
        field: Canonical field name

    Returns:
        Confidence in [0, 1]
    """
    if field not in FIELD_SYNONYMS or raw is None:
        return 0.0

    stripped = str(raw).strip()
    if _EXACT_INDEX.get(stripped) == field:
        return EXACT_MATCH_CONFIDENCE

    header = normalize_header(stripped)
    if not header:
        return 0.0
    if _NORMALIZED_INDEX.get(header) == field:
        return NORMALIZED_MATCH_CONFIDENCE

    choices = _NORMALIZED_SYNONYMS[field]
    best = process.extractOne(header, choices, scorer=fuzz.ratio)
    fuzzy = (best[1] / 100.0) if best else 0.0
    substring = max((_substring_score(header, syn) for syn in choices), default=0.0)
    return round(FUZZY_SCALE * max(fuzzy, substring), 4)


def resolve_header(raw: str) -> Optional[SynonymMatch]:
    """
    Resolve a raw header to its best canonical field.

    Args:
        raw: Original header

    Returns:
        SynonymMatch, or None when nothing scores above zero
    """
    if raw is None or not str(raw).strip():
        return None

    stripped = str(raw).strip()
    exact = _EXACT_INDEX.get(stripped)
    if exact:
        return SynonymMatch(exact, EXACT_MATCH_CONFIDENCE, stripped)

    header = normalize_header(stripped)
    normalized = _NORMALIZED_INDEX.get(header)
    if normalized:
        return SynonymMatch(normalized, NORMALIZED_MATCH_CONFIDENCE, header)

    best: Optional[SynonymMatch] = None
    for canonical in CANONICAL_FIELDS:
        score = score_header(stripped, canonical)
        if score <= 0:
            continue
        if best is None or score > best.confidence:
            match = process.extractOne(header, _NORMALIZED_SYNONYMS[canonical], scorer=fuzz.ratio)
            best = SynonymMatch(canonical, score, match[0] if match else canonical)

    if best:
        logger.debug(f"[SYNONYMS] '{raw}' -> {best.field} (fuzzy {best.confidence:.2f})")
    return best
