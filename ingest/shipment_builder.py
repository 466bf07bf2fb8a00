"""
Builds ParsedShipmentBundle objects from mapped row values.

Used by the spreadsheet path (one bundle per row) and the OCR path (one
bundle per recovered shipment), so both produce the same shape.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ingest.field_synonyms import DATE_FIELDS, ITEM_FIELDS, is_canonical_field
from ingest.normalization import (
    clean_string,
    is_empty_value,
    looks_like_phone,
    looks_like_po,
    normalize_status,
    parse_contact_string,
    parse_date_value,
    parse_number,
    parse_po_numbers,
)
from ingest.types import (
    Address,
    BundleMetadata,
    Contact,
    CustomDetails,
    Dropoff,
    FieldMapping,
    ParsedShipmentBundle,
    Pickup,
    RawRowData,
    ShipmentBase,
    ShipmentItem,
    SourceInfo,
)

logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    """Per-sheet information stamped on every bundle."""

    file_name: Optional[str] = None
    sheet_name: Optional[str] = None
    row_index: int = 0
    source_document_id: Optional[str] = None
    parser_version: str = "1.0.0"
    date_default_order: str = "MDY"
    original_headers: List[str] = field(default_factory=list)
    field_mappings_used: List[FieldMapping] = field(default_factory=list)
    positional_mapping: bool = False
    mapping_warnings: List[str] = field(default_factory=list)

    @property
    def ai_mapped_fields(self) -> List[FieldMapping]:
        return [m for m in self.field_mappings_used if m.source == "ai"]


def correct_swapped_contact_po(values: Dict[str, Any]) -> Optional[str]:
    """
    Swap contact and PO values back when they were entered in each other's column.

    Only swaps when the contact cell holds a PO-like code and the PO cell
    holds a phone number and nothing PO-like.

    Returns:
        Processing note when a swap happened, else None
    """
    contact = values.get("contactNumber")
    po = values.get("poNumber")
    if is_empty_value(contact) or is_empty_value(po):
        return None
    if looks_like_po(contact) and looks_like_phone(po) and not looks_like_po(po):
        values["contactNumber"], values["poNumber"] = po, contact
        logger.warning(f"[SHIPMENT_BUILDER] Contact '{contact}' and PO '{po}' look swapped - swapping back")
        return f"Swapped contact number ({po}) and PO number ({contact}) entered in each other's column"
    return None


def _address(raw: Any = None, city: Any = None, state: Any = None,
             postal_code: Any = None, area: Any = None) -> Optional[Address]:
    address = Address(
        raw=clean_string(raw),
        city=clean_string(city),
        state=clean_string(state),
        postal_code=clean_string(postal_code),
        area=clean_string(area),
    )
    return None if address.is_empty() else address


def _bundle_from_values(
    values: Dict[str, Any],
    miscellaneous: Dict[str, Any],
    context: BuildContext,
    original_row: RawRowData,
) -> ParsedShipmentBundle:
    notes: List[str] = []
    needs_review = False

    swap_note = correct_swapped_contact_po(values)
    if swap_note:
        notes.append(swap_note)
        needs_review = True

    dates = {}
    for name in DATE_FIELDS:
        raw = values.get(name)
        parsed = parse_date_value(raw, context.date_default_order)
        if parsed is None and not is_empty_value(raw):
            notes.append(f"Could not parse {name} value '{raw}'")
        dates[name] = parsed

    po_numbers = parse_po_numbers(values.get("poNumber"))
    if len(po_numbers) > 1:
        notes.append(f"Parsed {len(po_numbers)} PO numbers from '{clean_string(values.get('poNumber'))}'")

    items: List[ShipmentItem] = []
    if any(not is_empty_value(values.get(name)) for name in ITEM_FIELDS):
        items.append(ShipmentItem(
            item_number=clean_string(values.get("itemNumber")),
            description=clean_string(values.get("description")),
            lot_serial_number=clean_string(values.get("lotSerialNumber")),
            quantity=parse_number(values.get("quantity")),
            uom=clean_string(values.get("uom")),
            weight=parse_number(values.get("weight")),
        ))

    total_weight = parse_number(values.get("totalWeight"))
    if total_weight is None:
        item_weights = [item.weight for item in items if item.weight is not None]
        total_weight = sum(item_weights) if item_weights else None

    names, phones = parse_contact_string(values.get("contactNumber"))
    contact_name = clean_string(values.get("contactName")) or names
    contact = Contact(name=contact_name, phone=phones) if (contact_name or phones) else None

    destination = _address(
        values.get("shipToAddress"),
        values.get("shipToCity"),
        values.get("shipToState"),
        values.get("shipToPostalCode"),
        values.get("shipToArea"),
    )
    warehouse = clean_string(values.get("pickupWarehouse"))
    origin = _address(warehouse)

    customer = clean_string(values.get("shipToCustomer"))
    dropoff = None
    if customer or destination or contact or dates["expectedDeliveryDate"]:
        dropoff = Dropoff(
            customer_name=customer,
            address=destination,
            contact=contact,
            expected_date=dates["expectedDeliveryDate"],
        )

    pickup = None
    if warehouse or dates["promisedShipDate"]:
        pickup = Pickup(warehouse=warehouse, address=origin, scheduled_date=dates["promisedShipDate"])

    return ParsedShipmentBundle(
        base=ShipmentBase(
            load_number=clean_string(values.get("loadNumber")),
            order_number=clean_string(values.get("orderNumber")),
            po_numbers=po_numbers,
            status=normalize_status(values.get("status")),
            promised_ship_date=dates["promisedShipDate"],
            request_date=dates["requestDate"],
            actual_ship_date=dates["actualShipDate"],
            expected_delivery_date=dates["expectedDeliveryDate"],
            total_weight=total_weight,
        ),
        custom_details=CustomDetails(
            remarks=clean_string(values.get("remarks")),
            carrier_name=clean_string(values.get("carrierName")),
            truck_id=clean_string(values.get("truckId")),
            driver_name=clean_string(values.get("driverName")),
            miscellaneous=miscellaneous,
        ),
        origin_address=origin,
        destination_address=destination,
        pickup=pickup,
        dropoff=dropoff,
        items=items,
        metadata=BundleMetadata(
            original_headers=list(context.original_headers),
            field_mappings_used=list(context.field_mappings_used),
            ai_mapped_fields=context.ai_mapped_fields,
            needs_review=needs_review,
            contact_po_swapped=bool(swap_note),
            parser_version=context.parser_version,
            source_document_id=context.source_document_id,
            original_row_data=dict(original_row),
            processing_notes=notes,
            mapping_warnings=list(context.mapping_warnings),
            positional_mapping=context.positional_mapping,
        ),
        source_info=SourceInfo(
            file_name=context.file_name,
            sheet_name=context.sheet_name,
            row_index=context.row_index,
        ),
    )


def build_shipment_bundle(
    raw_row: RawRowData,
    mappings: Dict[str, FieldMapping],
    context: BuildContext,
) -> ParsedShipmentBundle:
    """
    Build a bundle from one spreadsheet row.

    Args:
        raw_row: header -> raw cell value
        mappings: header -> FieldMapping (canonical field, or the miscellaneous bucket)
        context: Sheet-level metadata and the row index

    Returns:
        ParsedShipmentBundle; unmapped non-empty cells go to custom_details.miscellaneous
    """
    values: Dict[str, Any] = {}
    miscellaneous: Dict[str, Any] = {}
    for header, value in raw_row.items():
        mapping = mappings.get(header)
        if mapping is not None and is_canonical_field(mapping.canonical_field):
            values[mapping.canonical_field] = value
        elif not is_empty_value(value):
            miscellaneous[header] = value
    return _bundle_from_values(values, miscellaneous, context, raw_row)


def build_bundle_from_payload(
    payload: Dict[str, Any],
    context: BuildContext,
    confidence: float,
) -> ParsedShipmentBundle:
    """
    Build a bundle from a structured shipment returned by the AI/OCR passes.

    Canonical keys become AI-sourced mappings carrying the extraction
    confidence; other keys go to the miscellaneous bucket.
    """
    values: Dict[str, Any] = {}
    miscellaneous: Dict[str, Any] = {}
    mappings: List[FieldMapping] = []
    for key, value in payload.items():
        if is_canonical_field(key):
            values[key] = value
            if not is_empty_value(value):
                mappings.append(FieldMapping(key, key, confidence, "ai"))
        elif not is_empty_value(value):
            miscellaneous[key] = value

    context = replace(context, original_headers=list(payload.keys()), field_mappings_used=mappings)
    return _bundle_from_values(values, miscellaneous, context, payload)
