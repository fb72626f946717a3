"""Tests for JSONL logging and payload redaction."""

from __future__ import annotations

import json
import logging
import sys

from daily_resolver.config import LoggingConfig
from daily_resolver.utils.logging import (
    JsonlFormatter,
    log_directory,
    log_event,
    redact_text,
    redact_value,
    setup_llm_logger,
    setup_logging,
    truncate_text,
)


def test_jsonl_formatter_includes_extras():
    record = logging.LogRecord("daily_resolver.x", logging.INFO, __file__, 1, "Resolved %s", ("c1",), None)
    record.candidate_id = "c1"
    record.score = -120.5

    payload = json.loads(JsonlFormatter().format(record))

    assert payload["message"] == "Resolved c1"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "daily_resolver.x"
    assert payload["candidate_id"] == "c1"
    assert payload["score"] == -120.5
    assert "msg" not in payload


def test_setup_logging_writes_jsonl_file(tmp_path):
    cfg = LoggingConfig(console=False, file=True, filename="run.jsonl")
    logger = setup_logging(cfg, tmp_path)
    try:
        log_event(logging.getLogger("daily_resolver.runner"), "Resolve start", event="resolve_start", date="2025-10-14")
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers = []

    line = (tmp_path / "run.jsonl").read_text(encoding="utf-8").strip()
    payload = json.loads(line)
    assert payload["event"] == "resolve_start"
    assert payload["date"] == "2025-10-14"


def test_llm_logger_needs_directory_and_flag(tmp_path):
    assert setup_llm_logger(LoggingConfig(), None) is None
    assert setup_llm_logger(LoggingConfig(llm_log_enabled=False), tmp_path) is None
    logger = setup_llm_logger(LoggingConfig(llm_log_file="llm.jsonl"), tmp_path)
    assert logger is not None
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    assert (tmp_path / "llm.jsonl").exists()


def test_log_event_ignores_missing_logger():
    log_event(None, "nothing", event="x")


def test_redaction_modes():
    text = "see https://example.com/a and http://b.example/c"
    assert redact_text(text, "none") == text
    assert redact_text(text, "redact_content") == ""
    assert redact_text(text, "redact_urls") == "see [REDACTED_URL] and [REDACTED_URL]"
    assert redact_value("https://api.example.com", "redact_urls") == "[REDACTED]"
    assert redact_value("https://api.example.com", "none") == "https://api.example.com"
    assert redact_value(None, "redact_urls") is None


def test_truncate_text_marks_cut():
    assert truncate_text("abcdef", 3) == "abc...(truncated)"
    assert truncate_text("abc", 3) == "abc"


def test_log_directory_follows_file_flag(tmp_path):
    assert log_directory(LoggingConfig(file=False, directory=str(tmp_path))) is None
    assert log_directory(LoggingConfig(file=True, directory=str(tmp_path))) == tmp_path


def test_jsonl_formatter_records_exceptions():
    try:
        raise ValueError("bad score")
    except ValueError:
        record = logging.getLogger("daily_resolver.x").makeRecord(
            "daily_resolver.x", logging.ERROR, __file__, 1, "boom", (), sys.exc_info()
        )

    payload = json.loads(JsonlFormatter().format(record))

    assert "ValueError: bad score" in payload["exception"]
