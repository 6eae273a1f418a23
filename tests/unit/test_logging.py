"""
Unit tests for structured logging.
Tests storage_lifecycle/core/logging.py
"""
import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from storage_lifecycle.core.logging import ContextualLogger, JSONFormatter, get_logger, setup_json_logging


def make_record(msg="hello", **extra):
    record = logging.LogRecord("storage_lifecycle.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestJSONFormatter:
    """Test JSON log formatting."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "storage_lifecycle.test"
        assert data["message"] == "hello"
        assert "timestamp" in data

    def test_extra_fields_serialized(self):
        """Test extras such as datetimes and bytes are JSON safe."""
        when = datetime(2025, 1, 1, tzinfo=timezone.utc)
        record = make_record(execution_id="exec-1", started=when, raw=b"abc", blob=b"\xff\xfe")

        data = json.loads(JSONFormatter().format(record))

        assert data["execution_id"] == "exec-1"
        assert data["started"] == when.isoformat()
        assert data["raw"] == "abc"
        assert data["blob"] == "<binary data: 2 bytes>"

    def test_exception_info(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "x", logging.ERROR, __file__, 1, "failed", None, exc_info=sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))

        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "boom"


@pytest.mark.unit
class TestLoggerSetup:
    """Test logger configuration helpers."""

    def test_setup_json_logging(self):
        logger = setup_json_logging("DEBUG", logger_name="storage_lifecycle.test_setup")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.propagate is False

    def test_setup_text_logging(self):
        logger = setup_json_logging("INFO", logger_name="storage_lifecycle.test_text", json_format=False)
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_contextual_logger_adds_context(self):
        """Test bound context and per-call extras both reach the record."""
        records = []
        handler = logging.Handler()
        handler.emit = records.append

        logger = get_logger("storage_lifecycle.test_context", with_context=True)
        assert isinstance(logger, ContextualLogger)
        logger.logger.setLevel(logging.INFO)
        logger.logger.addHandler(handler)
        try:
            logger.set_context(execution_id="exec-9")
            logger.info("scanning", extra={"page": 2})
        finally:
            logger.logger.removeHandler(handler)

        assert records[-1].execution_id == "exec-9"
        assert records[-1].page == 2

        logger.clear_context()
        assert logger.context == {}
