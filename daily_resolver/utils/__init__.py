"""
Shared utility functions.

This package contains logging helpers used across the resolver stages.
"""

from .logging import (
    log_directory,
    JsonlFormatter,
    log_event,
    redact_text,
    redact_value,
    setup_llm_logger,
    setup_logging,
    truncate_text,
)

__all__ = [
    "log_directory",
    "setup_logging",
    "setup_llm_logger",
    "log_event",
    "redact_text",
    "redact_value",
    "truncate_text",
    "JsonlFormatter",
]
