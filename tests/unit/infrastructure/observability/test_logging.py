"""Tests for structured logging."""

import json
import logging

import pytest

from artshelf.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    configure_logging,
    correlation_scope,
    get_correlation_id,
    set_correlation_id,
)


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self):
        """Test setting and getting correlation ID."""
        test_id = "test-123-abc"
        result = set_correlation_id(test_id)
        assert result == test_id
        assert get_correlation_id() == test_id

    def test_set_correlation_id_generates_uuid_when_none(self):
        """Test that setting None generates a UUID."""
        result = set_correlation_id(None)
        assert result is not None
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_correlation_scope_restores_previous_id(self):
        """Test that a job scope only lasts for its block."""
        set_correlation_id("request-1")
        with correlation_scope("job-42") as scoped:
            assert scoped == "job-42"
            assert get_correlation_id() == "job-42"
        assert get_correlation_id() == "request-1"

    def test_filter_adds_correlation_id(self):
        """Test that the filter stamps records."""
        set_correlation_id("filter-id")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert CorrelationIdFilter().filter(record)
        assert record.correlation_id == "filter-id"


class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_debug_level(self):
        """Test configuring logging with DEBUG level."""
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")
        logger = logging.getLogger("test")
        assert logger.getEffectiveLevel() <= logging.DEBUG

    def test_configure_logging_info_level(self):
        """Test configuring logging with INFO level."""
        configure_logging(log_level="INFO", json_format=False, app_name="test-app")
        logger = logging.getLogger("test")
        assert logger.getEffectiveLevel() == logging.INFO

    def test_configure_logging_replaces_handlers(self):
        """Test that calling it twice leaves exactly one handler."""
        configure_logging(log_level="INFO", json_format=True, app_name="test-app")
        configure_logging(log_level="INFO", json_format=False, app_name="test-app")
        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, CompactExceptionFormatter)

    def test_configure_logging_json_format(self):
        """Test configuring logging with JSON format."""
        configure_logging(log_level="INFO", json_format=True, app_name="test-app")
        root_logger = logging.getLogger()
        assert isinstance(root_logger.handlers[0].formatter, CustomJsonFormatter)

    def test_third_party_loggers_are_quiet(self):
        """Test that noisy libraries are capped at WARNING."""
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger("PIL").level == logging.WARNING


class TestFormatters:
    """Test the JSON and compact formatters."""

    def test_json_formatter_fields(self):
        """Test that JSON output carries level, logger and correlation id."""
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = logging.LogRecord("artshelf.test", logging.WARNING, __file__, 7, "hi", None, None)
        record.correlation_id = "json-id"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "hi"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "artshelf.test"
        assert payload["correlation_id"] == "json-id"

    def test_compact_exception_chain_root_cause_first(self):
        """Test that the chain is rendered oldest exception first."""
        formatter = CompactExceptionFormatter()
        try:
            try:
                raise PermissionError("denied")
            except PermissionError as e:
                raise RuntimeError("cannot scan") from e
        except RuntimeError as e:
            text = formatter.formatException((type(e), e, e.__traceback__))

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == ["╰─► PermissionError: denied", "╰─► RuntimeError: cannot scan"]

    @pytest.mark.parametrize("exc_info", [(None, None, None)])
    def test_compact_formatter_without_exception(self, exc_info):
        """Test that an empty exc_info renders nothing."""
        assert CompactExceptionFormatter().formatException(exc_info) == ""
