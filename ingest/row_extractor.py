"""
Row extractor: walks workbook sheets and turns every data row into a bundle.

Header mapping runs once per sheet (manual -> heuristic -> AI). A row that
fails is captured in its own bundle's processing errors and the walk goes on.
"""
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.errors import MappingError, PipelineError, RowExtractionError
from core.logger import log_json
from ingest.ai_mapping import AIFieldMappingService
from ingest.excel_parser import Sheet
from ingest.field_synonyms import resolve_header
from ingest.header_mapper import HeaderMapper, positional_mappings
from ingest.normalization import clean_string, is_empty_value
from ingest.shipment_builder import BuildContext, build_shipment_bundle
from ingest.types import (
    BundleMetadata,
    CustomDetails,
    FieldMapping,
    ParsedShipmentBundle,
    RawRowData,
    SourceInfo,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractionOptions:
    has_header_row: bool = True
    header_scan_rows: int = 10
    sheet_index: Optional[int] = None
    ai_mapping_enabled: bool = True
    ai_confidence_threshold: float = 0.7
    heuristic_threshold: float = 0.8
    positional_confidence: float = 0.5
    manual_overrides: Dict[str, str] = field(default_factory=dict)
    file_name: Optional[str] = None
    source_document_id: Optional[str] = None
    parser_version: str = "1.0.0"
    date_default_order: str = "MDY"


@dataclass
class ExtractionResult:
    bundles: List[ParsedShipmentBundle] = field(default_factory=list)
    sheets_processed: List[str] = field(default_factory=list)
    rows_total: int = 0
    rows_failed: int = 0
    ai_calls_requested: int = 0

    @property
    def all_rows_failed(self) -> bool:
        return self.rows_total > 0 and self.rows_failed == self.rows_total


def _is_empty_row(row: Sequence[Any]) -> bool:
    return all(is_empty_value(v) for v in row)


def make_headers(header_row: Sequence[Any]) -> Tuple[List[str], set]:
    """
    Header strings for a sheet: blanks become 'column_N', duplicates get a suffix.

    Returns:
        (headers, synthetic) where synthetic holds the generated names
    """
    headers: List[str] = []
    synthetic = set()
    seen: Dict[str, int] = {}
    for i, cell in enumerate(header_row):
        name = clean_string(cell)
        if not name:
            name = f"column_{i + 1}"
            synthetic.add(name)
        if name in seen:
            seen[name] += 1
            name = f"{name} ({seen[name]})"
        else:
            seen[name] = 1
        headers.append(name)
    return headers, synthetic


def detect_header_row(
    rows: Sequence[Sequence[Any]],
    start: int,
    threshold: float,
    scan_rows: int = 10,
    known_headers: Optional[set] = None,
) -> int:
    """
    Pick the header row among the first scan_rows non-empty rows.

    Each row scores one point per cell that names a manually mapped header or
    resolves to a known field at or above threshold. Title and banner lines
    above the table score low, so the earliest row with the most hits wins.
    Falls back to start when no row hits.
    """
    best_index, best_hits = start, 0
    scanned = 0
    for i in range(start, len(rows)):
        if scanned >= scan_rows:
            break
        if _is_empty_row(rows[i]):
            continue
        scanned += 1
        hits = 0
        for cell in rows[i]:
            text = clean_string(cell)
            if text and known_headers and text in known_headers:
                hits += 1
                continue
            match = resolve_header(text)
            if match and match.confidence >= threshold:
                hits += 1
        if hits > best_hits:
            best_index, best_hits = i, hits
    return best_index


async def resolve_sheet_mappings(
    headers: List[str],
    options: ExtractionOptions,
    ai_service: Optional[AIFieldMappingService] = None,
    skip_ai: Optional[set] = None,
) -> Tuple[Dict[str, FieldMapping], List[str], int]:
    """
    Map a sheet's headers: manual overrides, then synonyms, then AI for the rest.

    Returns:
        (mappings, warnings, ai_headers_requested)
    """
    heuristic = HeaderMapper(options.heuristic_threshold).map_headers(headers, options.manual_overrides)
    mappings = dict(heuristic.mappings)
    warnings: List[str] = []

    unresolved = [h for h in heuristic.unresolved if h not in (skip_ai or set())]
    if not unresolved:
        return mappings, warnings, 0

    if not options.ai_mapping_enabled or ai_service is None:
        logger.info(f"[ROW_EXTRACTOR] AI mapping disabled, {len(unresolved)} header(s) kept as miscellaneous")
        return mappings, warnings, 0

    taken = set(heuristic.mapped_fields)
    outcomes = await ai_service.map_headers(unresolved)
    for header, outcome in outcomes.items():
        if isinstance(outcome, MappingError):
            warnings.append(f"Header '{header}' left unmapped: {outcome.message} [{outcome.code}]")
            continue
        if outcome.confidence < options.ai_confidence_threshold:
            warnings.append(
                f"Header '{header}' left unmapped: AI suggested '{outcome.field}' "
                f"with confidence {outcome.confidence:.2f}"
            )
            continue
        if outcome.field in taken:
            warnings.append(f"Header '{header}' left unmapped: field '{outcome.field}' already mapped")
            continue
        mappings[header] = FieldMapping(header, outcome.field, outcome.confidence, "ai")
        taken.add(outcome.field)

    return mappings, warnings, len(unresolved)


def _failed_row_bundle(
    raw_row: RawRowData,
    context: BuildContext,
    error: RowExtractionError,
) -> ParsedShipmentBundle:
    """Partial bundle for a row that raised: raw cells kept, flagged for review."""
    return ParsedShipmentBundle(
        custom_details=CustomDetails(
            miscellaneous={k: v for k, v in raw_row.items() if not is_empty_value(v)}
        ),
        metadata=BundleMetadata(
            original_headers=list(context.original_headers),
            field_mappings_used=list(context.field_mappings_used),
            ai_mapped_fields=context.ai_mapped_fields,
            needs_review=True,
            parser_version=context.parser_version,
            processing_errors=[str(error)],
            source_document_id=context.source_document_id,
            original_row_data=dict(raw_row),
            mapping_warnings=list(context.mapping_warnings),
            positional_mapping=context.positional_mapping,
        ),
        source_info=SourceInfo(
            file_name=context.file_name,
            sheet_name=context.sheet_name,
            row_index=context.row_index,
        ),
    )


async def _extract_sheet(
    sheet: Sheet,
    options: ExtractionOptions,
    ai_service: Optional[AIFieldMappingService],
    result: ExtractionResult,
) -> List[ParsedShipmentBundle]:
    rows = sheet.rows
    start = next((i for i, row in enumerate(rows) if not _is_empty_row(row)), None)
    if start is None:
        logger.info(f"[ROW_EXTRACTOR] Sheet '{sheet.name}' is empty, skipped")
        return []

    if options.has_header_row:
        header_index = detect_header_row(
            rows, start, options.heuristic_threshold, options.header_scan_rows, set(options.manual_overrides)
        )
        if header_index != start:
            logger.info(
                f"[ROW_EXTRACTOR] Sheet '{sheet.name}': header found at row {header_index}, "
                f"{header_index - start} leading row(s) skipped"
            )
        headers, synthetic = make_headers(rows[header_index])
        mappings, warnings, ai_requested = await resolve_sheet_mappings(headers, options, ai_service, synthetic)
        result.ai_calls_requested += ai_requested
        data_start = header_index + 1
        positional = False
    else:
        width = max(len(row) for row in rows)
        positional_result = positional_mappings(width, options.positional_confidence)
        headers = list(positional_result.mappings.keys())
        mappings, warnings = positional_result.mappings, []
        data_start = start
        positional = True

    sheet_context = BuildContext(
        file_name=options.file_name,
        sheet_name=sheet.name,
        source_document_id=options.source_document_id,
        parser_version=options.parser_version,
        date_default_order=options.date_default_order,
        original_headers=headers,
        field_mappings_used=list(mappings.values()),
        positional_mapping=positional,
        mapping_warnings=warnings,
    )

    bundles: List[ParsedShipmentBundle] = []
    for row_index in range(data_start, len(rows)):
        row = rows[row_index]
        if _is_empty_row(row):
            continue

        raw_row: RawRowData = {}
        for i, value in enumerate(row):
            key = headers[i] if i < len(headers) else f"column_{i + 1}"
            raw_row[key] = value

        context = replace(sheet_context, row_index=row_index)
        result.rows_total += 1
        try:
            bundle = build_shipment_bundle(raw_row, mappings, context)
        except Exception as e:
            error = RowExtractionError(str(e) or e.__class__.__name__, row_index, sheet.name)
            logger.warning(f"[ROW_EXTRACTOR] {error}")
            bundle = _failed_row_bundle(raw_row, context, error)
            result.rows_failed += 1
        bundles.append(bundle)

    logger.info(
        f"[ROW_EXTRACTOR] Sheet '{sheet.name}': {len(bundles)} rows extracted, "
        f"{sum(1 for b in bundles if b.metadata.processing_errors)} with errors"
    )
    return bundles


async def extract_bundles(
    sheets: List[Sheet],
    options: ExtractionOptions,
    ai_service: Optional[AIFieldMappingService] = None,
) -> ExtractionResult:
    """
    Extract one bundle per data row across the selected sheets.

    Args:
        sheets: Decoded workbook sheets
        options: Header/sheet/AI options
        ai_service: AI mapping service for headers the synonyms cannot resolve

    Returns:
        ExtractionResult with bundles ordered by (sheet, row index)

    Raises:
        PipelineError: sheet_index points at a sheet that does not exist
    """
    start_time = time.time()
    result = ExtractionResult()

    if options.sheet_index is not None:
        if options.sheet_index < 0 or options.sheet_index >= len(sheets):
            raise PipelineError(
                f"Sheet at index {options.sheet_index} does not exist ({len(sheets)} sheet(s) in workbook)",
                code="sheet_not_found",
            )
        selected = [sheets[options.sheet_index]]
    else:
        selected = [s for s in sheets if s.non_empty_rows > 0]

    for sheet in selected:
        bundles = await _extract_sheet(sheet, options, ai_service, result)
        if bundles:
            result.sheets_processed.append(sheet.name)
        result.bundles.extend(bundles)

    sheet_order = {s.name: s.index for s in sheets}
    result.bundles.sort(key=lambda b: (sheet_order.get(b.source_info.sheet_name, 0), b.source_info.row_index))

    elapsed_ms = (time.time() - start_time) * 1000
    log_json(
        level='info',
        message=f"Extraction completed: {len(result.bundles)} bundles from {len(result.sheets_processed)} sheet(s)",
        stage='row_extraction',
        file_name=options.file_name,
        rows_total=result.rows_total,
        rows_failed=result.rows_failed,
        elapsed_ms=round(elapsed_ms, 1),
        sheets=result.sheets_processed,
    )
    return result
