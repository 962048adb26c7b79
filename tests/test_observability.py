"""Tests for run-context propagation and the log formatters."""

import json
import logging

import pytest

from flowstate.observability import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)
from flowstate.observability.logging import HumanReadableFormatter, StructuredFormatter


@pytest.fixture(autouse=True)
def clean_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def restore_root_logger(monkeypatch):
    monkeypatch.delenv("NO_COLOR", raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("flowstate.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_trace_context_accumulates_and_clears():
    set_trace_context(run_id="r1", graph_id="g")
    set_trace_context(stage="navigator")
    assert get_trace_context() == {"run_id": "r1", "graph_id": "g", "stage": "navigator"}

    clear_trace_context()
    assert get_trace_context() == {}


def test_get_trace_context_returns_a_copy():
    set_trace_context(run_id="r1")
    get_trace_context()["run_id"] = "tampered"
    assert get_trace_context()["run_id"] == "r1"


def test_structured_formatter_includes_context_and_extras():
    set_trace_context(run_id="r1", graph_id="g", stage="security")
    line = StructuredFormatter().format(make_record("\033[32mdone\033[0m", latency_ms=12))
    data = json.loads(line)

    assert data["message"] == "done"
    assert data["level"] == "info"
    assert data["logger"] == "flowstate.test"
    assert data["run_id"] == "r1"
    assert data["stage"] == "security"
    assert data["latency_ms"] == 12


def test_human_formatter_prefixes_context():
    set_trace_context(run_id="abcdef1234567890", graph_id="g", stage="arbiter")
    line = HumanReadableFormatter().format(make_record("merging", event="decide"))

    assert "[run:abcdef12 | graph:g | stage:arbiter]" in line
    assert "merging" in line
    assert line.endswith("[decide]")


def test_human_formatter_without_context():
    line = HumanReadableFormatter().format(make_record("plain"))
    assert "[run:" not in line
    assert line.endswith("plain")


def test_configure_logging_json(restore_root_logger):
    configure_logging(level="debug", format="json")
    assert restore_root_logger.level == logging.DEBUG
    assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)


def test_configure_logging_auto_honours_env(restore_root_logger, monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    configure_logging(format="auto")
    assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    monkeypatch.setenv("LOG_FORMAT", "")
    monkeypatch.setenv("ENV", "development")
    configure_logging(format="auto")
    assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)
