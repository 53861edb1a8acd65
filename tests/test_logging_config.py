"""
test_logging_config.py — Tests for the JSON and console log formatters.

Run with:
    pytest tests/test_logging_config.py -v
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from backend.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    set_request_context,
)


def _make_log_record(msg: str = "Escalated %s", *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="backend.app.notifications.escalation",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args or ("evt-1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clear_request_context():
    set_request_context()
    yield
    set_request_context()


class TestJSONFormatter:

    def test_event_fields_grouped(self):
        line = JSONFormatter().format(
            _make_log_record(event_id="evt-1", channel="SMS", user_id="demo_user")
        )
        entry = json.loads(line)
        assert entry["msg"] == "Escalated evt-1"
        assert entry["event"] == {"event_id": "evt-1", "user_id": "demo_user", "channel": "SMS"}
        assert "request" not in entry

    def test_request_scope_included(self):
        set_request_context(request_id="req-1", endpoint="/api/v1/notifications/ack")
        entry = json.loads(JSONFormatter().format(_make_log_record(status_code=200)))
        assert entry["request"]["request_id"] == "req-1"
        assert entry["request"]["status_code"] == 200
        assert "event" not in entry

    def test_exception_rendered(self):
        try:
            raise RuntimeError("timer thread died")
        except RuntimeError:
            record = _make_log_record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: timer thread died" in entry["exception"]


class TestPrettyFormatter:

    def test_event_tags_appended(self):
        line = PrettyFormatter().format(_make_log_record(event_id="evt-1", channel="PUSH"))
        assert line.endswith("(evt=evt-1 ch=PUSH)")
        assert "Escalated evt-1" in line

    def test_plain_line_without_scope(self):
        line = PrettyFormatter().format(_make_log_record())
        assert "(" not in line.split(": ", 1)[1]
        assert "[" not in line

    def test_request_id_prefix(self):
        set_request_context(request_id="abcdef1234567890")
        assert "[abcdef12]" in PrettyFormatter().format(_make_log_record())
