"""
Tests for Logging Infrastructure
"""
import json
import logging
from io import StringIO

import pytest

from mailroom.core.logging import (
    CorrelationIdFilter,
    JSONFormatter,
    bound_log_context,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)


def _capture(logger_name: str, formatter: logging.Formatter) -> tuple[logging.Logger, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    logger = get_logger(logger_name)
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    return logger, stream


class TestCorrelationId:

    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()

        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get_correlation_id(self):
        assert set_correlation_id("mail1234") == "mail1234"
        assert get_correlation_id() == "mail1234"

    @pytest.mark.unit
    def test_set_correlation_id_generates_if_none(self):
        result = set_correlation_id(None)

        assert len(result) == 8
        assert get_correlation_id() == result


class TestJSONFormatter:

    @pytest.mark.unit
    def test_basic_fields(self):
        logger, stream = _capture("test.json.basic", JSONFormatter(app_name="mailroom-test"))

        logger.info("Newsletter queued")

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "INFO"
        assert entry["message"] == "Newsletter queued"
        assert entry["logger"] == "test.json.basic"
        assert entry["app"] == "mailroom-test"
        assert "timestamp" in entry
        assert entry["location"].startswith("test_logging.test_basic_fields:")

    @pytest.mark.unit
    def test_includes_correlation_id(self):
        set_correlation_id("corr0001")
        logger, stream = _capture("test.json.corr", JSONFormatter())

        logger.info("Correlated message")

        assert json.loads(stream.getvalue())["correlation_id"] == "corr0001"

    @pytest.mark.unit
    def test_includes_exception(self):
        logger, stream = _capture("test.json.exc", JSONFormatter())

        try:
            raise ValueError("smtp said no")
        except ValueError:
            logger.error("Send failed", exc_info=True)

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "ERROR"
        assert "ValueError" in entry["exception"]

    @pytest.mark.unit
    def test_extra_data_with_non_json_values(self):
        logger, stream = _capture("test.json.extra", JSONFormatter())
        from datetime import datetime

        logger.warning(
            "Reclaimed delivery",
            extra_data={"newsletter_issue_id": "abc", "claimed_at": datetime(2024, 1, 1)},
        )

        entry = json.loads(stream.getvalue())
        assert entry["extra"]["newsletter_issue_id"] == "abc"
        assert entry["extra"]["claimed_at"].startswith("2024-01-01")

    @pytest.mark.unit
    def test_bound_context_applies_inside_block_only(self):
        logger, stream = _capture("test.json.context", JSONFormatter())

        with bound_log_context(newsletter_issue_id="abc"):
            with bound_log_context(subscriber_email="ur***@example.com"):
                logger.info("inner")
            logger.info("outer")
        logger.info("after")

        inner, outer, after = (json.loads(line) for line in stream.getvalue().splitlines())
        assert inner["context"] == {
            "newsletter_issue_id": "abc",
            "subscriber_email": "ur***@example.com",
        }
        assert outer["context"] == {"newsletter_issue_id": "abc"}
        assert "context" not in after


class TestStructuredLogger:

    @pytest.mark.unit
    def test_get_logger(self):
        logger = get_logger("mailroom.test.module")
        assert logger.name == "mailroom.test.module"

    @pytest.mark.unit
    def test_disabled_level_skips_record(self):
        logger, stream = _capture("test.level", JSONFormatter())
        logger.setLevel(logging.WARNING)

        logger.info("hidden", extra_data={"x": 1})

        assert stream.getvalue() == ""


class TestSetupLogging:

    @pytest.mark.unit
    def test_human_readable_format_has_correlation_id(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="DEBUG", json_format=False)
            handler = root.handlers[0]
            assert any(isinstance(f, CorrelationIdFilter) for f in handler.filters)

            set_correlation_id("human001")
            record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", (), None)
            for f in handler.filters:
                f.filter(record)
            assert "[human001]" in handler.format(record)
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)

    @pytest.mark.unit
    def test_json_format_installs_json_formatter(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="INFO", json_format=True, app_name="mailroom-worker")
            formatter = root.handlers[0].formatter
            assert isinstance(formatter, JSONFormatter)
            assert formatter.app_name == "mailroom-worker"
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
