"""
Gate - routes an upload by file type.

Decides whether a file goes down the spreadsheet path or the OCR path.
Runs before a document record exists, so failures are InputError.
"""
import logging
from typing import Optional, Sequence, Tuple

from core.errors import InputError

logger = logging.getLogger(__name__)

SPREADSHEET_EXTENSIONS = ('csv', 'tsv', 'xlsx', 'xlsm', 'xls')
OCR_EXTENSIONS = ('pdf', 'jpg', 'jpeg', 'png', 'webp')


def route_file(
    file_content: bytes,
    file_name: str,
    ext: Optional[str] = None,
    ocr_enabled: bool = True,
    ocr_extensions: Optional[Sequence[str]] = None,
) -> Tuple[str, str]:
    """
    Route a file to the pipeline path matching its extension.

    Args:
        file_content: File bytes
        file_name: File name
        ext: Extension (taken from file_name when None)
        ocr_enabled: Whether image/PDF uploads are accepted
        ocr_extensions: Extensions sent to OCR (OCR_EXTENSIONS when None)

    Returns:
        Tuple (stage, ext):
        - stage: 'spreadsheet' for CSV/Excel, 'ocr' for PDF/images
        - ext: normalized extension (lowercase, no dot)

    Raises:
        InputError: empty file or unsupported format
    """
    if not file_content:
        raise InputError(f"File {file_name or ''} is empty", code="empty_file")

    if ext is None:
        if file_name and '.' in file_name:
            ext = file_name.rsplit('.', 1)[-1].lower()
        else:
            raise InputError(f"Cannot determine file extension: {file_name}", code="unknown_extension")

    ext = ext.lower().strip().lstrip('.')

    if ext in SPREADSHEET_EXTENSIONS:
        logger.info(f"[GATE] File {file_name} routed to spreadsheet parser")
        return 'spreadsheet', ext

    ocr_extensions = tuple(ocr_extensions or OCR_EXTENSIONS)
    if ext in ocr_extensions:
        if not ocr_enabled:
            raise InputError(f"Image and PDF uploads are disabled: .{ext}", code="ocr_disabled")
        logger.info(f"[GATE] File {file_name} routed to OCR")
        return 'ocr', ext

    error_msg = (
        f"Unsupported file format: .{ext}. "
        f"Supported: {', '.join(e.upper() for e in SPREADSHEET_EXTENSIONS + ocr_extensions)}"
    )
    logger.error(f"[GATE] {error_msg}")
    raise InputError(error_msg, code="unsupported_format")
