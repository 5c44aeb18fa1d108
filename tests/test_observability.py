"""Tests for run-scoped logging context and formatters."""

import json
import logging

from reactloop.observability import (
    clear_trace_context,
    get_trace_context,
    set_trace_context,
)
from reactloop.observability.logging import HumanReadableFormatter, StructuredFormatter


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("reactloop.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_context_merges_and_clears():
    set_trace_context(run_id="abc123456789")
    set_trace_context(node="reason", step=2)

    assert get_trace_context() == {"run_id": "abc123456789", "node": "reason", "step": 2}

    clear_trace_context()
    assert get_trace_context() == {}


def test_structured_formatter_includes_context():
    set_trace_context(run_id="run-1", node="act", step=3)

    line = StructuredFormatter().format(make_record("\x1b[32mcalled tool\x1b[0m", provider="fs"))
    data = json.loads(line)

    assert data["message"] == "called tool"
    assert data["run_id"] == "run-1"
    assert data["node"] == "act"
    assert data["step"] == 3
    assert data["provider"] == "fs"
    assert data["level"] == "info"


def test_human_formatter_prefix():
    set_trace_context(run_id="abcdef1234567890", node="discover", step=0)

    text = HumanReadableFormatter().format(make_record("hello"))

    assert "[run:abcdef12 | node:discover | step:0]" in text
    assert text.endswith("hello")
