"""
Logging for the resolver.

Two streams are configured:
- the "daily_resolver" logger: Rich console output plus an optional file
  (JSONL by default) that carries every `log_event` field, so tier and score
  decisions can be grepped when recalibrating thresholds
- the "daily_resolver.llm" logger: one JSONL line per provider call, with
  prompts and replies redacted and truncated according to config
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
import re
from typing import Any

from rich.logging import RichHandler

from ..config import LoggingConfig

ROOT_LOGGER = "daily_resolver"
LLM_LOGGER = "daily_resolver.llm"

_URL_RE = re.compile(r"https?://\S+")

# Attributes every LogRecord has; anything else arrived through `extra`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def log_directory(cfg: LoggingConfig) -> Path | None:
    """Directory for log files, or None when file logging is off."""
    if not cfg.file:
        return None
    return Path(cfg.directory)


def setup_logging(cfg: LoggingConfig, log_dir: Path | None) -> logging.Logger:
    """(Re)configure the package logger; safe to call once per command."""
    level = _level_from_string(cfg.level)
    logger = _reset(logging.getLogger(ROOT_LOGGER), level)

    if cfg.console:
        console = RichHandler(rich_tracebacks=True, show_time=False, show_level=True)
        console.setLevel(level)
        console.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(console)

    if cfg.file and log_dir is not None:
        formatter = JsonlFormatter() if cfg.format == "jsonl" else logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        logger.addHandler(_file_handler(log_dir / cfg.filename, level, formatter))

    return logger


def setup_llm_logger(cfg: LoggingConfig, log_dir: Path | None) -> logging.Logger | None:
    if not cfg.llm_log_enabled or log_dir is None:
        return None
    level = _level_from_string(cfg.level)
    logger = _reset(logging.getLogger(LLM_LOGGER), level)
    logger.addHandler(_file_handler(log_dir / cfg.llm_log_file, level, JsonlFormatter()))
    return logger


def log_event(logger: logging.Logger | None, message: str, **fields: Any) -> None:
    """Emit an INFO record whose keyword fields become JSONL keys."""
    if logger is None:
        return
    logger.info(message, extra=fields)


def redact_text(text: str, mode: str) -> str:
    """Scrub a prompt or reply before it is written to a log or trace.

    Modes: "none" keeps the text, "redact_content" drops it entirely and
    "redact_urls" masks links. Unknown modes keep the text.
    """
    if mode == "redact_content":
        return ""
    if mode == "redact_urls":
        return _URL_RE.sub("[REDACTED_URL]", text)
    return text


def redact_value(value: str | None, mode: str) -> str | None:
    """Mask a single identifying value (endpoint, key hint) unless mode is "none"."""
    if value is None or mode == "none":
        return value
    return "[REDACTED]"


def truncate_text(text: str, max_chars: int = 20000) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "...(truncated)"


class JsonlFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message and extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _reset(logger: logging.Logger, level: int) -> logging.Logger:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False
    return logger


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _level_from_string(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)
