"""Tests for structured logging and request context"""
import json
import logging

from eventsnaps.logging import (
    RequestContextFilter, StructuredFormatter, correlation_id, event_code,
    set_correlation_id, set_event_code,
)
from eventsnaps.middleware import event_code_from_path


def make_record(message="photo uploaded", **extra):
    record = logging.LogRecord("eventsnaps.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    RequestContextFilter().filter(record)
    return record


class TestStructuredFormatter:
    """Test JSON log output"""

    def test_includes_request_context(self):
        corr_token = correlation_id.set(None)
        code_token = event_code.set(None)
        try:
            set_correlation_id("trace-1")
            set_event_code("ab12cd")
            entry = json.loads(StructuredFormatter().format(make_record(photo_id="p-1")))
        finally:
            correlation_id.reset(corr_token)
            event_code.reset(code_token)

        assert entry["message"] == "photo uploaded"
        assert entry["level"] == "INFO"
        assert entry["correlation_id"] == "trace-1"
        assert entry["event_code"] == "AB12CD"
        assert entry["photo_id"] == "p-1"
        assert "msg" not in entry

    def test_unset_context_omitted(self):
        corr_token = correlation_id.set(None)
        code_token = event_code.set(None)
        try:
            entry = json.loads(StructuredFormatter().format(make_record()))
        finally:
            correlation_id.reset(corr_token)
            event_code.reset(code_token)

        assert "correlation_id" not in entry
        assert "event_code" not in entry

    def test_generates_correlation_id(self):
        token = correlation_id.set(None)
        try:
            generated = set_correlation_id()
            assert correlation_id.get() == generated
            assert len(generated) == 36
        finally:
            correlation_id.reset(token)


class TestEventCodeFromPath:
    """Test event code extraction for log tagging"""

    def test_event_routes(self):
        assert event_code_from_path("/events/ab12cd") == "ab12cd"
        assert event_code_from_path("/events/ab12cd/photos") == "ab12cd"

    def test_other_routes(self):
        assert event_code_from_path("/events") is None
        assert event_code_from_path("/health") is None
        assert event_code_from_path("/jukebox/abc/vote") is None
