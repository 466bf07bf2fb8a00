"""
Router for document ingestion.

Endpoints:
- POST /api/documents/ingest: process an uploaded spreadsheet/image/PDF
- GET /api/documents/{document_id}: document status
- GET /api/documents/{document_id}/shipments: stored shipment bundles
"""
import json
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from core.config import get_config
from core.document_manager import DocumentStore, SQLDocumentStore
from core.errors import PersistenceError
from core.logger import set_request_context
from ingest.ai_mapping import AIFieldMappingService, get_ai_mapping_service
from ingest.field_synonyms import is_canonical_field
from ingest.llm_client import CompletionClient, get_completion_client
from ingest.pipeline import IngestionRequest, process_document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["ingest"])

_document_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Shared SQL-backed document store"""
    global _document_store
    if _document_store is None:
        _document_store = SQLDocumentStore()
    return _document_store


def get_ai_service() -> AIFieldMappingService:
    return get_ai_mapping_service()


def get_ocr_client() -> CompletionClient:
    return get_completion_client()


def parse_field_overrides(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse the field_overrides form value (JSON object header -> canonical field).

    Raises:
        HTTPException 400: not a JSON object of strings, or unknown canonical field
    """
    if raw is None or not raw.strip():
        return {}
    try:
        overrides = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"field_overrides is not valid JSON: {e}")

    if not isinstance(overrides, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in overrides.items()
    ):
        raise HTTPException(status_code=400, detail="field_overrides must map header names to field names")

    unknown = sorted(v for v in overrides.values() if not is_canonical_field(v))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown canonical field(s) in field_overrides: {unknown}")
    return overrides


@router.post("/ingest")
async def ingest_document(
    file: UploadFile = File(...),
    document_type: str = Form("ETD_REPORT"),
    has_header_row: bool = Form(True),
    sheet_index: Optional[int] = Form(None),
    ai_mapping_enabled: bool = Form(True),
    ai_confidence_threshold: float = Form(0.7),
    field_overrides: Optional[str] = Form(None),
    x_correlation_id: Optional[str] = Header(None),
    store: DocumentStore = Depends(get_document_store),
    ai_service: AIFieldMappingService = Depends(get_ai_service),
    ocr_client: CompletionClient = Depends(get_ocr_client),
):
    """
    Process one uploaded document synchronously.

    Returns 200 with {status, documentId, shipmentCount} on success, 400 for
    rejected input, 422 when processing failed ({status, message, documentId}).
    """
    set_request_context(correlation_id=x_correlation_id)
    config = get_config()

    manual_overrides = parse_field_overrides(field_overrides)

    file_content = await file.read()
    max_bytes = config.max_file_size_mb * 1024 * 1024
    if len(file_content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File too large (max {config.max_file_size_mb}MB)")

    request = IngestionRequest(
        document_type=document_type,
        file_content=file_content,
        file_name=file.filename or "upload",
        has_header_row=has_header_row,
        sheet_index=sheet_index,
        ai_mapping_enabled=ai_mapping_enabled,
        ai_confidence_threshold=ai_confidence_threshold,
        manual_overrides=manual_overrides,
    )

    response = await process_document(
        request,
        store,
        ai_service=ai_service,
        completion_client=ocr_client,
        config=config,
    )

    if response.success:
        status_code = 200
    elif response.document_id is not None:
        status_code = 422
    elif response.error_code == "persistence_failed":
        # No record could be created
        status_code = 503
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content=response.to_dict())


@router.get("/{document_id}")
async def get_document_status(document_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        document = await store.get_document(document_id)
    except PersistenceError as e:
        logger.error(f"[INGEST_API] Error reading document {document_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
    return document


@router.get("/{document_id}/shipments")
async def get_document_shipments(document_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        document = await store.get_document(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
        shipments = await store.list_shipments(document_id)
    except PersistenceError as e:
        logger.error(f"[INGEST_API] Error reading shipments of {document_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "documentId": document_id,
        "status": document["status"],
        "shipmentCount": len(shipments),
        "shipments": shipments,
    }
