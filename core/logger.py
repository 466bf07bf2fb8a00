"""
Structured logging for the ingestion processor.

Combines colored console logging with JSON line logging and a per-request
context (correlation id, document id) carried through contextvars.
"""
import logging
import json
import uuid
import sys
import contextvars
from typing import Optional, Dict, Any
from datetime import datetime, timezone

import colorlog

# Context variables used to trace one ingestion request
_request_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('request_context', default={})


def setup_colored_logging(service_name: str = "processor"):
    """
    Configure colored logging with colorlog.

    Args:
        service_name: Service name shown on every log line
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG)

    formatter = colorlog.ColoredFormatter(
        f'%(log_color)s[%(levelname)s]%(reset)s %(cyan)s{service_name}%(reset)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        reset=True,
        log_colors={
            'DEBUG': 'white',
            'INFO': 'blue',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        },
        secondary_log_colors={},
        style='%'
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers = []
    root_logger.addHandler(handler)

    # Quieter third-party loggers
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    return root_logger


def set_request_context(document_id: Optional[str] = None, correlation_id: Optional[str] = None):
    """
    Set the request context used by structured logging.

    Args:
        document_id: Document being processed
        correlation_id: Correlation id (generated when None)
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context = {}
    if document_id is not None:
        context["document_id"] = document_id
    context["correlation_id"] = correlation_id

    _request_context.set(context)


def bind_document_id(document_id: str):
    """Attach the document id to the current request context."""
    context = dict(_request_context.get({}))
    context["document_id"] = document_id
    _request_context.set(context)


def get_request_context() -> Dict[str, Any]:
    """
    Return the current request context.

    Returns:
        Dict with document_id and correlation_id
    """
    return _request_context.get({})


def get_correlation_id() -> Optional[str]:
    return get_request_context().get("correlation_id")


def log_json(
    level: str,
    message: str,
    document_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    stage: Optional[str] = None,
    file_name: Optional[str] = None,
    ext: Optional[str] = None,
    rows_total: Optional[int] = None,
    rows_failed: Optional[int] = None,
    shipment_count: Optional[int] = None,
    elapsed_ms: Optional[float] = None,
    decision: Optional[str] = None,
    **extra
):
    """
    Structured log line in JSON format.

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Message to log
        document_id: Document id (taken from context when None)
        correlation_id: Correlation id (taken from context when None)
        stage: Pipeline stage (gate, spreadsheet, ocr, finalize)
        file_name: Processed file name
        ext: File extension
        rows_total: Data rows seen
        rows_failed: Rows that raised during extraction
        shipment_count: Bundles produced
        elapsed_ms: Elapsed time in milliseconds
        decision: Pipeline decision (processed/error)
        **extra: Additional fields
    """
    ctx = get_request_context()
    if document_id is None:
        document_id = ctx.get("document_id")
    if correlation_id is None:
        correlation_id = ctx.get("correlation_id")

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level.upper(),
        "message": message,
    }

    if correlation_id:
        log_data["correlation_id"] = correlation_id
    if document_id:
        log_data["document_id"] = document_id
    if file_name:
        log_data["file_name"] = file_name
    if ext:
        log_data["ext"] = ext
    if stage:
        log_data["stage"] = stage

    # Metrics
    if rows_total is not None:
        log_data["rows_total"] = rows_total
    if rows_failed is not None:
        log_data["rows_failed"] = rows_failed
    if shipment_count is not None:
        log_data["shipment_count"] = shipment_count
    if elapsed_ms is not None:
        log_data["elapsed_ms"] = elapsed_ms

    if decision:
        log_data["decision"] = decision

    log_data.update(extra)

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)

    json_line = json.dumps(log_data, ensure_ascii=False, default=str)
    log_func(json_line)
