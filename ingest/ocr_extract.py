"""
OCR extraction for image and PDF uploads.

Pass 1 sends the page images to the vision model and asks for text plus
structured shipments. When only text comes back, pass 2 turns the text into
the same structure. If the vision call fails, pytesseract recovers the text
locally and pass 2 runs on it.
"""
import base64
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytesseract
from PIL import Image
from pdf2image import convert_from_bytes
from pydantic import ValidationError

from core.config import ProcessorConfig, get_config
from core.errors import CompletionError, NoDataExtractedError, PipelineError, user_message
from core.logger import log_json
from ingest.field_synonyms import FIELD_SYNONYMS
from ingest.llm_client import CompletionClient, parse_json_object
from ingest.validation import OCRExtractionPayload

logger = logging.getLogger(__name__)

VISION_CONFIDENCE = 0.85
STRUCTURE_CONFIDENCE = 0.75
LOCAL_OCR_CONFIDENCE = 0.6

_FIELD_LIST = ", ".join(FIELD_SYNONYMS.keys())

VISION_SYSTEM_PROMPT = f"""You are an expert OCR system specializing in logistics documents
(delivery orders, ETD reports, load plans, waybills).
Read all text in the images, preserving table structure with | as column separator.
Then identify every shipment in the document.

Reply ONLY with a JSON object:
{{"text": "<all text read>", "shipments": [{{<canonical field>: <value>}}], "confidence": <0..1>}}

Canonical fields: {_FIELD_LIST}
Dates as written in the document. Leave out fields that are not present."""

VISION_USER_PROMPT = "Extract the text and the shipments from this document."

STRUCTURE_SYSTEM_PROMPT = f"""You convert text recovered from logistics documents into shipment records.
Reply ONLY with a JSON object:
{{"shipments": [{{<canonical field>: <value>}}], "confidence": <0..1>}}

Canonical fields: {_FIELD_LIST}
Use an empty list when the text holds no shipment."""


@dataclass
class OCRExtractionResult:
    shipments: List[Dict[str, Any]] = field(default_factory=list)
    raw_text: str = ""
    confidence: float = 0.0
    method: str = "vision"


def prepare_images(file_content: bytes, ext: str, max_pages: int = 3, dpi: int = 200) -> List[Image.Image]:
    """
    Load the upload as RGB images (PDF pages rasterized with pdf2image).

    Raises:
        PipelineError: the bytes are not a readable image/PDF
    """
    try:
        if ext == 'pdf':
            images = convert_from_bytes(file_content, dpi=dpi, first_page=1, last_page=max_pages)
            logger.info(f"[OCR] PDF converted to {len(images)} images")
        else:
            image = Image.open(io.BytesIO(file_content))
            image.load()
            logger.debug(f"[OCR] Image loaded: {image.size}, mode: {image.mode}")
            images = [image]
    except Exception as e:
        logger.error(f"[OCR] Error loading .{ext} upload: {e}")
        raise PipelineError(f"Could not read .{ext} file: {e}", code="unreadable_image") from e

    if not images:
        raise NoDataExtractedError("The document has no pages")
    return [img.convert('RGB') if img.mode != 'RGB' else img for img in images]


def image_to_data_url(image: Image.Image, quality: int = 85) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', quality=quality)
    encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
    return f"data:image/jpeg;base64,{encoded}"


def extract_text_locally(images: List[Image.Image]) -> str:
    """
    Recover text with pytesseract, page by page.

    Raises:
        PipelineError: tesseract is not installed or fails on every page
    """
    texts = []
    last_error: Optional[Exception] = None
    for page_idx, image in enumerate(images):
        try:
            page_text = pytesseract.image_to_string(image, lang='eng')
            texts.append(page_text)
            logger.debug(f"[OCR] Page {page_idx + 1}/{len(images)}: {len(page_text)} characters")
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            last_error = e
            logger.warning(f"[OCR] Tesseract failed on page {page_idx + 1}: {e}")
    if not texts and last_error is not None:
        raise PipelineError(f"Local OCR failed: {last_error}", code="local_ocr_failed") from last_error
    return '\n\n'.join(texts)


def _parse_payload(answer: str) -> Optional[OCRExtractionPayload]:
    try:
        return OCRExtractionPayload.model_validate(parse_json_object(answer))
    except (ValueError, ValidationError) as e:
        logger.debug(f"[OCR] Answer is not a structured payload: {e}")
        return None


def _shipment_rows(payload: OCRExtractionPayload) -> List[Dict[str, Any]]:
    return [row for row in (s.to_row() for s in payload.shipments) if row]


async def extract_ocr(
    file_content: bytes,
    file_name: str,
    ext: str,
    client: CompletionClient,
    config: Optional[ProcessorConfig] = None,
) -> OCRExtractionResult:
    """
    Recover shipments from an image or PDF.

    Args:
        file_content: File bytes
        file_name: File name (for logging)
        ext: Normalized extension
        client: Completion client used for the vision and structure passes
        config: Processor configuration

    Returns:
        OCRExtractionResult with at least one shipment

    Raises:
        NoDataExtractedError: nothing usable was recovered
        PipelineError: unreadable upload, AI service failure with fallback
            disabled, or a non-transient AI failure
    """
    config = config or get_config()
    start_time = time.time()
    images = prepare_images(file_content, ext, config.ocr_max_pdf_pages, config.ocr_dpi)

    raw_text = ""
    method = "vision"
    base_confidence = STRUCTURE_CONFIDENCE

    try:
        answer = await client.complete_vision(
            system_prompt=VISION_SYSTEM_PROMPT,
            user_prompt=VISION_USER_PROMPT,
            image_data_urls=[image_to_data_url(img) for img in images],
            model=config.openai_vision_model,
            max_tokens=config.vision_max_tokens,
        )
        payload = _parse_payload(answer)
        if payload is None:
            raw_text = answer
        else:
            raw_text = payload.text or ""
            shipments = _shipment_rows(payload)
            if shipments:
                confidence = payload.confidence if payload.confidence is not None else VISION_CONFIDENCE
                _log_result(file_name, ext, "vision", len(shipments), start_time)
                return OCRExtractionResult(shipments, raw_text, min(confidence, VISION_CONFIDENCE), "vision")
    except CompletionError as e:
        # Only transient vision failures fall back to tesseract
        if not (config.ocr_local_fallback_enabled and e.recoverable):
            raise PipelineError(user_message(e), code=e.code) from e
        logger.warning(f"[OCR] Vision pass failed ({e.code}), falling back to tesseract")
        raw_text = extract_text_locally(images)
        method = "tesseract"
        base_confidence = LOCAL_OCR_CONFIDENCE

    if not raw_text or not raw_text.strip():
        raise NoDataExtractedError("No text could be extracted from the document")

    try:
        answer = await client.complete(
            system_prompt=STRUCTURE_SYSTEM_PROMPT,
            user_prompt=f"Document text:\n\n{raw_text}",
            model=config.openai_structure_model,
            max_tokens=config.vision_max_tokens,
        )
    except CompletionError as e:
        raise PipelineError(user_message(e), code=e.code) from e

    payload = _parse_payload(answer)
    shipments = _shipment_rows(payload) if payload else []
    if not shipments:
        raise NoDataExtractedError("Text was recovered but no shipment data could be identified")

    confidence = base_confidence
    if payload.confidence is not None:
        confidence = min(payload.confidence, base_confidence)

    method = f"{method}+structure"
    _log_result(file_name, ext, method, len(shipments), start_time)
    return OCRExtractionResult(shipments, raw_text, confidence, method)


def _log_result(file_name: str, ext: str, method: str, shipment_count: int, start_time: float):
    elapsed_ms = (time.time() - start_time) * 1000
    log_json(
        level='info',
        message=f"OCR extraction completed via {method}",
        stage='ocr',
        file_name=file_name,
        ext=ext,
        shipment_count=shipment_count,
        elapsed_ms=round(elapsed_ms, 1),
        method=method,
    )
