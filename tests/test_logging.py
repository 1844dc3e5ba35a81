"""Tests for structured logging helpers."""

import json
import logging

from studyspace.core.logging import (
    JsonFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


def make_record(msg: str, args: tuple = (), **extra) -> logging.LogRecord:
    record = logging.LogRecord("studyspace.test", logging.INFO, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSensitiveDataFilter:
    """Test redaction of credentials."""

    def test_bearer_token_redacted(self):
        record = make_record("%s", ("Bearer eyJhbGciOi",))
        SensitiveDataFilter().filter(record)
        assert record.getMessage() == "Bearer ***REDACTED***"

    def test_sensitive_extra_redacted(self):
        record = make_record("forwarding", authorization="Bearer abc", user_id="u1")
        SensitiveDataFilter().filter(record)
        assert record.authorization == "***REDACTED***"
        assert record.user_id == "u1"

    def test_nested_args_redacted(self):
        record = make_record("%s", (["Bearer abc", "feedback"],))
        SensitiveDataFilter().filter(record)
        assert record.args == (["Bearer ***REDACTED***", "feedback"],)


class TestJsonFormatter:
    """Test JSON output."""

    def test_request_context_and_extras(self):
        set_request_id("req-123")
        try:
            record = make_record("Session started", event_type="session_started", user_id="u1")
            RequestContextFilter().filter(record)
            data = json.loads(JsonFormatter().format(record))
        finally:
            clear_request_id()

        assert data["message"] == "Session started"
        assert data["request_id"] == "req-123"
        assert data["event_type"] == "session_started"
        assert data["user_id"] == "u1"

    def test_defaults_without_request(self):
        record = make_record("background")
        RequestContextFilter().filter(record)
        data = json.loads(JsonFormatter().format(record))
        assert data["request_id"] == "-"
        assert data["event_type"] == "general"
