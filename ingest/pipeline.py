"""
Document orchestrator - runs one upload end to end.

Flow:
1. Gate: validate the upload and pick the path (spreadsheet or OCR)
2. Create the document record (UPLOADED) and move it to PROCESSING
3. Spreadsheet path: decode the workbook, map headers, extract one bundle per row
   OCR path: recover shipments from the image/PDF and build bundles from them
4. Review every bundle (confidence score + validation)
5. Persist the bundles and close the document as PROCESSED

Whatever happens after the record exists, DocumentLifecycle writes exactly one
terminal status (PROCESSED or ERROR) when the run ends.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import ProcessorConfig, get_config
from core.document_manager import DocumentStore
from core.errors import IngestError, InputError, PersistenceError, PipelineError, user_message
from core.logger import bind_document_id, get_request_context, log_json, set_request_context
from ingest.ai_mapping import AIFieldMappingService, get_ai_mapping_service
from ingest.excel_parser import read_workbook
from ingest.gate import route_file
from ingest.llm_client import CompletionClient, get_completion_client
from ingest.ocr_extract import extract_ocr
from ingest.row_extractor import ExtractionOptions, extract_bundles
from ingest.scoring import ScoringSettings
from ingest.shipment_builder import BuildContext, build_bundle_from_payload
from ingest.types import DocumentStatus, DocumentType, ParsedShipmentBundle
from ingest.validation import apply_review

logger = logging.getLogger(__name__)


@dataclass
class IngestionRequest:
    document_type: str
    file_content: bytes
    file_name: str
    has_header_row: bool = True
    sheet_index: Optional[int] = None
    ai_mapping_enabled: bool = True
    ai_confidence_threshold: float = 0.7
    # raw header -> canonical field, applied before any other mapping
    manual_overrides: Dict[str, str] = field(default_factory=dict)


@dataclass
class IngestionResponse:
    status: str
    document_id: Optional[str] = None
    shipment_count: int = 0
    message: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {
                "status": self.status,
                "documentId": self.document_id,
                "shipmentCount": self.shipment_count,
            }
        return {
            "status": self.status,
            "message": self.message,
            "documentId": self.document_id,
        }


def truncate_message(message: str, max_length: int) -> str:
    if len(message) <= max_length:
        return message
    return message[:max(max_length - 3, 0)] + "..."


class DocumentLifecycle:
    """
    Async context manager owning the status of one document.

    The body calls start() and, when everything is stored, succeed(). On exit
    the terminal status is written once: PROCESSED after succeed(), ERROR for
    any exception or for a body that ended without a result. Exceptions are
    consumed and turned into the error response.

    Args:
        store: Document store
        document_id: Document to drive
        max_error_length: Longest error message stored on the document
    """

    def __init__(self, store: DocumentStore, document_id: str, max_error_length: int = 500):
        self.store = store
        self.document_id = document_id
        self.max_error_length = max_error_length
        self.shipment_count = 0
        self.error_message: Optional[str] = None
        self.error_code: Optional[str] = None
        self._succeeded = False
        self._finalized = False

    async def start(self):
        await self.store.update_document(self.document_id, DocumentStatus.PROCESSING)

    def succeed(self, shipment_count: int):
        self._succeeded = True
        self.shipment_count = shipment_count

    def fail(self, error: BaseException):
        self._succeeded = False
        self.error_message = truncate_message(user_message(error), self.max_error_length)
        self.error_code = getattr(error, "code", None) or "internal_error"

    @property
    def final_status(self) -> DocumentStatus:
        return DocumentStatus.PROCESSED if self._succeeded else DocumentStatus.ERROR

    async def __aenter__(self) -> "DocumentLifecycle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is not None:
            if isinstance(exc_val, IngestError):
                logger.warning(f"[PIPELINE] Document {self.document_id} failed: {exc_val} [{exc_val.code}]")
            else:
                logger.error(f"[PIPELINE] Unexpected error on document {self.document_id}: {exc_val}", exc_info=True)
            self.fail(exc_val)
        elif not self._succeeded:
            self.fail(PipelineError("Processing ended without a result"))

        await self._finalize()
        # KeyboardInterrupt/CancelledError still propagate after the ERROR write
        return exc_type is not None and issubclass(exc_type, Exception)

    async def _finalize(self):
        if self._finalized:
            return
        self._finalized = True

        status = self.final_status
        try:
            if status == DocumentStatus.PROCESSED:
                await self.store.update_document(
                    self.document_id,
                    status,
                    shipment_count=self.shipment_count,
                    parsed_date=datetime.utcnow(),
                )
            else:
                await self.store.update_document(self.document_id, status, error_message=self.error_message)
        except PersistenceError as e:
            # The response still reflects the processing outcome
            logger.error(f"[PIPELINE] Could not write {status.value} for document {self.document_id}: {e}")

    def response(self) -> IngestionResponse:
        if self.final_status == DocumentStatus.PROCESSED:
            return IngestionResponse(
                status="success",
                document_id=self.document_id,
                shipment_count=self.shipment_count,
            )
        return IngestionResponse(
            status="error",
            document_id=self.document_id,
            message=self.error_message,
            error_code=self.error_code,
        )


def validate_request(request: IngestionRequest):
    """
    Reject option values that cannot be processed.

    Raises:
        InputError: unknown document type, threshold out of [0, 1], negative sheet index
    """
    try:
        DocumentType(request.document_type)
    except ValueError:
        allowed = ", ".join(t.value for t in DocumentType)
        raise InputError(
            f"Unknown document type '{request.document_type}' (allowed: {allowed})",
            code="unknown_document_type",
        )
    if not 0.0 <= request.ai_confidence_threshold <= 1.0:
        raise InputError(
            f"AI confidence threshold must be between 0 and 1, got {request.ai_confidence_threshold}",
            code="invalid_threshold",
        )
    if request.sheet_index is not None and request.sheet_index < 0:
        raise InputError(f"Sheet index must be >= 0, got {request.sheet_index}", code="invalid_sheet_index")


async def _run_spreadsheet(
    request: IngestionRequest,
    ext: str,
    document_id: str,
    config: ProcessorConfig,
    ai_service: Optional[AIFieldMappingService],
) -> List[ParsedShipmentBundle]:
    sheets = read_workbook(request.file_content, ext)
    options = ExtractionOptions(
        has_header_row=request.has_header_row,
        header_scan_rows=config.header_scan_rows,
        sheet_index=request.sheet_index,
        ai_mapping_enabled=request.ai_mapping_enabled and ai_service is not None,
        ai_confidence_threshold=request.ai_confidence_threshold,
        heuristic_threshold=config.heuristic_confidence_th,
        positional_confidence=config.positional_mapping_confidence,
        manual_overrides=dict(request.manual_overrides),
        file_name=request.file_name,
        source_document_id=document_id,
        parser_version=config.parser_version,
        date_default_order=config.date_default_order,
    )
    result = await extract_bundles(sheets, options, ai_service)

    if not result.bundles:
        raise PipelineError("No shipment rows found in the document", code="no_rows")
    if result.all_rows_failed:
        raise PipelineError(
            f"All {result.rows_total} rows failed extraction",
            code="all_rows_failed",
        )
    return result.bundles


async def _run_ocr(
    request: IngestionRequest,
    ext: str,
    document_id: str,
    config: ProcessorConfig,
    client: CompletionClient,
) -> List[ParsedShipmentBundle]:
    ocr = await extract_ocr(request.file_content, request.file_name, ext, client, config)

    bundles = []
    for index, shipment in enumerate(ocr.shipments):
        context = BuildContext(
            file_name=request.file_name,
            row_index=index,
            source_document_id=document_id,
            parser_version=config.parser_version,
            date_default_order=config.date_default_order,
        )
        bundle = build_bundle_from_payload(shipment, context, ocr.confidence)
        bundle.metadata.processing_notes.append(
            f"Extracted by OCR ({ocr.method}, confidence {ocr.confidence:.2f})"
        )
        bundles.append(bundle)
    return bundles


def _resolve_ai_service(
    request: IngestionRequest,
    config: ProcessorConfig,
    ai_service: Optional[AIFieldMappingService],
) -> Optional[AIFieldMappingService]:
    if not (request.ai_mapping_enabled and config.ai_mapping_enabled):
        return None
    service = ai_service or get_ai_mapping_service()
    if not service.client.configured:
        logger.warning("[PIPELINE] AI mapping requested but no API key is configured, using synonyms only")
        return None
    return service


async def process_document(
    request: IngestionRequest,
    store: DocumentStore,
    ai_service: Optional[AIFieldMappingService] = None,
    completion_client: Optional[CompletionClient] = None,
    config: Optional[ProcessorConfig] = None,
) -> IngestionResponse:
    """
    Process one uploaded document.

    Args:
        request: Upload bytes and processing options
        store: Document store
        ai_service: AI header mapping service (shared one when None)
        completion_client: Client for the OCR passes (shared one when None)
        config: Processor configuration

    Returns:
        IngestionResponse; input errors come back with no document id, every
        other failure carries the id of a document left in ERROR
    """
    config = config or get_config()
    start_time = time.time()

    if not get_request_context().get("correlation_id"):
        set_request_context()

    try:
        validate_request(request)
        stage, ext = route_file(
            request.file_content,
            request.file_name,
            ocr_enabled=config.ocr_enabled,
            ocr_extensions=config.get_ocr_extensions_list(),
        )
    except InputError as e:
        log_json(
            level='warning',
            message=f"Upload rejected: {e}",
            stage='gate',
            file_name=request.file_name,
            decision='rejected',
            error_code=e.code,
        )
        return IngestionResponse(status="error", message=str(e), error_code=e.code)

    try:
        document_id = await store.create_document(
            request.document_type,
            request.file_name,
            ext,
            len(request.file_content),
        )
    except PersistenceError as e:
        logger.error(f"[PIPELINE] Document record not created for {request.file_name}: {e}")
        return IngestionResponse(status="error", message=user_message(e), error_code=e.code)

    bind_document_id(document_id)
    log_json(
        level='info',
        message=f"Processing started: {request.file_name}",
        stage=stage,
        file_name=request.file_name,
        ext=ext,
        document_type=request.document_type,
    )

    lifecycle = DocumentLifecycle(store, document_id, config.max_error_message_length)
    async with lifecycle:
        await lifecycle.start()

        if stage == 'spreadsheet':
            service = _resolve_ai_service(request, config, ai_service)
            bundles = await _run_spreadsheet(request, ext, document_id, config, service)
        else:
            client = completion_client or get_completion_client()
            bundles = await _run_ocr(request, ext, document_id, config, client)

        settings = ScoringSettings.from_config(config)
        for bundle in bundles:
            apply_review(bundle, settings)

        saved = await store.save_bundles(document_id, bundles)
        lifecycle.succeed(saved)

    response = lifecycle.response()
    elapsed_ms = (time.time() - start_time) * 1000
    log_json(
        level='info' if response.success else 'error',
        message="Document processed" if response.success else f"Document failed: {response.message}",
        stage='finalize',
        file_name=request.file_name,
        ext=ext,
        shipment_count=response.shipment_count,
        elapsed_ms=round(elapsed_ms, 1),
        decision=lifecycle.final_status.value,
        error_code=response.error_code,
    )
    return response
