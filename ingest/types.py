from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Literal, Any, Dict, List

MappingSource = Literal["heuristic", "ai", "manual"]

# Header -> raw cell value for one spreadsheet row
RawRowData = Dict[str, Any]

MISC_FIELD = "miscellaneous"


class DocumentStatus(str, Enum):
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    ERROR = "ERROR"


ALLOWED_TRANSITIONS = {
    DocumentStatus.UPLOADED: frozenset({DocumentStatus.PROCESSING, DocumentStatus.ERROR}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.PROCESSED, DocumentStatus.ERROR}),
    DocumentStatus.PROCESSED: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[DocumentStatus(current)]


@dataclass
class FieldMapping:
    original_field: str
    canonical_field: str
    confidence: float
    source: MappingSource = "heuristic"


@dataclass
class Address:
    raw: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    area: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(asdict(self).values())


@dataclass
class Contact:
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class Pickup:
    warehouse: Optional[str] = None
    address: Optional[Address] = None
    scheduled_date: Optional[datetime] = None


@dataclass
class Dropoff:
    customer_name: Optional[str] = None
    address: Optional[Address] = None
    contact: Optional[Contact] = None
    expected_date: Optional[datetime] = None


@dataclass
class ShipmentItem:
    item_number: Optional[str] = None
    description: Optional[str] = None
    lot_serial_number: Optional[str] = None
    quantity: Optional[float] = None
    uom: Optional[str] = None
    weight: Optional[float] = None


@dataclass
class ShipmentBase:
    load_number: Optional[str] = None
    order_number: Optional[str] = None
    po_numbers: List[str] = field(default_factory=list)
    status: str = "AWAITING_STATUS"
    promised_ship_date: Optional[datetime] = None
    request_date: Optional[datetime] = None
    actual_ship_date: Optional[datetime] = None
    expected_delivery_date: Optional[datetime] = None
    total_weight: Optional[float] = None


@dataclass
class CustomDetails:
    remarks: Optional[str] = None
    carrier_name: Optional[str] = None
    truck_id: Optional[str] = None
    driver_name: Optional[str] = None
    # Columns that did not map onto a canonical field
    miscellaneous: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BundleMetadata:
    original_headers: List[str] = field(default_factory=list)
    field_mappings_used: List[FieldMapping] = field(default_factory=list)
    ai_mapped_fields: List[FieldMapping] = field(default_factory=list)
    needs_review: bool = False
    parser_version: str = "1.0.0"
    processing_errors: List[str] = field(default_factory=list)
    source_document_id: Optional[str] = None
    original_row_data: RawRowData = field(default_factory=dict)
    processing_notes: List[str] = field(default_factory=list)
    mapping_warnings: List[str] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    positional_mapping: bool = False
    contact_po_swapped: bool = False


@dataclass
class SourceInfo:
    file_name: Optional[str] = None
    sheet_name: Optional[str] = None
    row_index: int = 0


@dataclass
class ParsedShipmentBundle:
    base: ShipmentBase = field(default_factory=ShipmentBase)
    custom_details: CustomDetails = field(default_factory=CustomDetails)
    origin_address: Optional[Address] = None
    destination_address: Optional[Address] = None
    pickup: Optional[Pickup] = None
    dropoff: Optional[Dropoff] = None
    items: List[ShipmentItem] = field(default_factory=list)
    metadata: BundleMetadata = field(default_factory=BundleMetadata)
    source_info: SourceInfo = field(default_factory=SourceInfo)

    def field_values(self) -> Dict[str, Any]:
        """Current value of every canonical field, read from the sub-objects."""
        dest = self.destination_address or Address()
        dropoff = self.dropoff or Dropoff()
        contact = dropoff.contact or Contact()
        pickup = self.pickup or Pickup()
        first_item = self.items[0] if self.items else ShipmentItem()
        status = self.base.status if self.base.status != "AWAITING_STATUS" else None
        return {
            "loadNumber": self.base.load_number,
            "orderNumber": self.base.order_number,
            "poNumber": " | ".join(self.base.po_numbers) or None,
            "status": status,
            "promisedShipDate": self.base.promised_ship_date,
            "requestDate": self.base.request_date,
            "actualShipDate": self.base.actual_ship_date,
            "expectedDeliveryDate": self.base.expected_delivery_date,
            "shipToCustomer": dropoff.customer_name,
            "shipToAddress": dest.raw,
            "shipToCity": dest.city,
            "shipToState": dest.state,
            "shipToPostalCode": dest.postal_code,
            "shipToArea": dest.area,
            "contactName": contact.name,
            "contactNumber": contact.phone,
            "pickupWarehouse": pickup.warehouse,
            "itemNumber": first_item.item_number,
            "description": first_item.description,
            "lotSerialNumber": first_item.lot_serial_number,
            "quantity": first_item.quantity,
            "uom": first_item.uom,
            "weight": first_item.weight,
            "totalWeight": self.base.total_weight,
            "items": self.items,
            "remarks": self.custom_details.remarks,
            "carrierName": self.custom_details.carrier_name,
            "truckId": self.custom_details.truck_id,
            "driverName": self.custom_details.driver_name,
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation (datetimes as ISO strings)."""
        return _jsonable(asdict(self))


@dataclass
class ShipmentConfidenceScore:
    confidence: float
    needs_review: bool
    message: str
    completeness: float = 0.0
    missing_critical_fields: List[str] = field(default_factory=list)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class DocumentType(str, Enum):
    ETD_REPORT = "ETD_REPORT"
    OUTSTATION_RATES = "OUTSTATION_RATES"
    UNKNOWN = "UNKNOWN"
