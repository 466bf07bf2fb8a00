"""
Error taxonomy for the ingestion pipeline.

Every error carries a stable ``code`` so callers branch on codes, never on
message text.
"""
from enum import Enum
from typing import Optional


class IngestError(Exception):
    """Base class for pipeline errors."""

    code = "ingest_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class InputError(IngestError):
    """Unsupported, empty or unreadable upload, raised before a document record exists."""

    code = "invalid_input"


class MappingError(IngestError):
    """
    AI field mapping could not produce a usable answer.

    Returned as a value by the AI mapping service and recovered locally:
    the header stays unmapped.
    """

    code = "mapping_failed"

    def __init__(self, message: str, code: Optional[str] = None, header: Optional[str] = None):
        super().__init__(message, code)
        self.header = header


class RowExtractionError(IngestError):
    """A single row failed; recorded in that row's processing errors."""

    code = "row_extraction_failed"

    def __init__(self, message: str, row_index: int, sheet_name: Optional[str] = None):
        super().__init__(message)
        self.row_index = row_index
        self.sheet_name = sheet_name

    def __str__(self) -> str:
        where = f"sheet '{self.sheet_name}' " if self.sheet_name else ""
        return f"Row {self.row_index + 1} {where}could not be extracted: {self.message}"


class PipelineError(IngestError):
    """Document-level failure; the document ends in ERROR."""

    code = "pipeline_failed"


class NoDataExtractedError(PipelineError):
    """OCR recovered no text and no structure from the upload."""

    code = "no_data_extracted"


class PersistenceError(IngestError):
    """Storage collaborator failure."""

    code = "persistence_failed"


class CompletionErrorCode(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CONNECTION_ERROR = "connection_error"
    AUTHENTICATION = "authentication"
    BAD_REQUEST = "bad_request"
    EMPTY_RESPONSE = "empty_response"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


class CompletionError(IngestError):
    """External completion/vision service failure with a typed code."""

    code = "completion_failed"

    def __init__(self, error_code: CompletionErrorCode, message: str):
        super().__init__(message, error_code.value)
        self.error_code = error_code

    @property
    def recoverable(self) -> bool:
        return self.error_code in (
            CompletionErrorCode.TIMEOUT,
            CompletionErrorCode.RATE_LIMITED,
            CompletionErrorCode.SERVICE_UNAVAILABLE,
            CompletionErrorCode.CONNECTION_ERROR,
        )


# Readable messages stored on the document when an external call fails
COMPLETION_ERROR_MESSAGES = {
    CompletionErrorCode.TIMEOUT: "The AI service timed out. Please try again.",
    CompletionErrorCode.RATE_LIMITED: "The AI service is rate limited. Please try again in a few minutes.",
    CompletionErrorCode.QUOTA_EXCEEDED: "The AI service quota is exhausted. Contact an administrator.",
    CompletionErrorCode.SERVICE_UNAVAILABLE: "The AI service is temporarily unavailable.",
    CompletionErrorCode.CONNECTION_ERROR: "Could not reach the AI service.",
    CompletionErrorCode.AUTHENTICATION: "The AI service rejected the configured credentials.",
    CompletionErrorCode.BAD_REQUEST: "The AI service rejected the request.",
    CompletionErrorCode.EMPTY_RESPONSE: "The AI service returned an empty response.",
    CompletionErrorCode.NOT_CONFIGURED: "The AI service is not configured.",
    CompletionErrorCode.UNKNOWN: "The AI service failed unexpectedly.",
}


def user_message(error: BaseException) -> str:
    """Short human-readable message for an error stored on a document."""
    if isinstance(error, CompletionError):
        return COMPLETION_ERROR_MESSAGES.get(error.error_code, str(error))
    message = str(error).strip()
    return message or error.__class__.__name__
