"""
Tests for the error taxonomy, structured logging context and configuration checks.
"""
import json
import logging

import pytest

from core.config import ProcessorConfig
from core.errors import (
    CompletionError,
    CompletionErrorCode,
    InputError,
    MappingError,
    NoDataExtractedError,
    PersistenceError,
    PipelineError,
    RowExtractionError,
    user_message,
)
from core.logger import bind_document_id, get_correlation_id, get_request_context, log_json, set_request_context


class TestErrorCodes:
    """Every error carries a stable code."""

    def test_default_codes(self):
        assert InputError("x").code == "invalid_input"
        assert PipelineError("x").code == "pipeline_failed"
        assert NoDataExtractedError("x").code == "no_data_extracted"
        assert PersistenceError("x").code == "persistence_failed"
        assert MappingError("x").code == "mapping_failed"

    def test_code_override(self):
        error = InputError("File is empty", code="empty_file")
        assert error.code == "empty_file"
        assert str(error) == "File is empty"

    def test_no_data_is_pipeline_error(self):
        assert isinstance(NoDataExtractedError("x"), PipelineError)

    def test_row_error_message(self):
        error = RowExtractionError("bad date", row_index=4, sheet_name="Loads")
        assert str(error) == "Row 5 sheet 'Loads' could not be extracted: bad date"
        assert str(RowExtractionError("bad date", row_index=0)) == "Row 1 could not be extracted: bad date"

    def test_completion_error_recoverable(self):
        assert CompletionError(CompletionErrorCode.TIMEOUT, "slow").recoverable
        assert CompletionError(CompletionErrorCode.RATE_LIMITED, "slow").recoverable
        assert not CompletionError(CompletionErrorCode.AUTHENTICATION, "bad key").recoverable
        assert CompletionError(CompletionErrorCode.QUOTA_EXCEEDED, "x").code == "quota_exceeded"

    def test_mapping_error_keeps_header(self):
        error = MappingError("Malformed AI answer", code="malformed_response", header="Consignee Ref")
        assert error.header == "Consignee Ref"


class TestUserMessage:

    def test_completion_error_message(self):
        message = user_message(CompletionError(CompletionErrorCode.TIMEOUT, "read timeout after 10s"))
        assert message == "The AI service timed out. Please try again."

    def test_plain_error(self):
        assert user_message(PipelineError("  No shipment rows found  ")) == "No shipment rows found"

    def test_empty_message_uses_class_name(self):
        assert user_message(RuntimeError()) == "RuntimeError"


class TestRequestContext:

    def test_generated_correlation_id(self):
        set_request_context()
        assert get_correlation_id()

    def test_bind_document_id_keeps_correlation(self):
        set_request_context(correlation_id="corr-1")
        bind_document_id("doc-1")

        assert get_request_context() == {"correlation_id": "corr-1", "document_id": "doc-1"}

    def test_log_json_uses_context(self, caplog):
        set_request_context(document_id="doc-9", correlation_id="corr-9")

        with caplog.at_level(logging.INFO, logger="core.logger"):
            log_json(level='info', message="Processing started", stage='spreadsheet', rows_total=3, sheets=["Loads"])

        record = json.loads(caplog.records[-1].getMessage())
        assert record["level"] == "INFO"
        assert record["document_id"] == "doc-9"
        assert record["correlation_id"] == "corr-9"
        assert record["stage"] == "spreadsheet"
        assert record["rows_total"] == 3
        assert record["sheets"] == ["Loads"]

    def test_log_json_level(self, caplog):
        with caplog.at_level(logging.WARNING, logger="core.logger"):
            log_json(level='warning', message="Upload rejected", decision='rejected')

        assert caplog.records[-1].levelno == logging.WARNING


class TestConfigValidation:

    def test_defaults_valid(self, test_config):
        assert test_config.validate_config()

    def test_weights_must_sum_to_one(self):
        config = ProcessorConfig(openai_api_key="", confidence_weight=0.7, completeness_weight=0.7)
        with pytest.raises(ValueError):
            config.validate_config()

    def test_date_order_validated(self):
        assert ProcessorConfig(date_default_order=" dmy ").date_default_order == "DMY"
        with pytest.raises(ValueError):
            ProcessorConfig(date_default_order="YMD")

    def test_ocr_extensions_list(self):
        config = ProcessorConfig(ocr_extensions="PDF, png")
        assert config.get_ocr_extensions_list() == ["pdf", "png"]
