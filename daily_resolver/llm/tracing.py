"""
Langfuse tracing for resolve runs, arbitration and publication calls.

Spans are emitted only when `langfuse.enabled` is set and the SDK is
installed; otherwise every helper is a no-op and callers never branch on it.
A failing tracing backend is logged at debug level and never interrupts a
resolution.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
import logging
import os
from typing import Any, Iterator

from ..config import LangfuseConfig
from ..utils.logging import redact_text, truncate_text

logger = logging.getLogger(__name__)

# Langfuse client argument -> environment fallback
_CLIENT_ENV = {
    "public_key": "LANGFUSE_PUBLIC_KEY",
    "secret_key": "LANGFUSE_SECRET_KEY",
    "host": "LANGFUSE_HOST",
    "environment": "LANGFUSE_ENVIRONMENT",
    "release": "LANGFUSE_RELEASE",
}

_SCALARS = (str, int, float, bool)


@dataclass
class _TraceState:
    tracer: Any = None
    cfg: LangfuseConfig | None = None


_state = _TraceState()


def setup_langfuse(cfg: LangfuseConfig) -> None:
    """Install (or clear) the process-wide Langfuse client."""
    _state.cfg = cfg
    _state.tracer = _create_client(cfg) if cfg.enabled else None


def get_tracer():
    return _state.tracer


@contextmanager
def start_span(
    name: str,
    kind: str,
    input_value: Any | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Any | None]:
    """Open a Langfuse span around the block, or yield None when tracing is off."""
    if _state.tracer is None:
        yield None
        return

    metadata = _clean_attributes(attributes or {})
    if kind:
        metadata.setdefault("span.kind", kind)

    cm = None
    span = None
    entered = False
    with _swallow(f"start span {name}"):
        cm = _state.tracer.start_as_current_span(
            name=name, input=_span_text(input_value), metadata=metadata
        )
        span = cm.__enter__()
        entered = True

    try:
        yield span
    finally:
        if entered:
            with _swallow(f"close span {name}"):
                cm.__exit__(None, None, None)


def set_span_output(span: Any | None, output_value: Any) -> None:
    text = _span_text(output_value)
    if span is None or text is None:
        return
    with _swallow("set span output"):
        span.update(output=text)


def record_span_error(span: Any | None, exc: Exception) -> None:
    if span is None:
        return
    with _swallow("record span error"):
        span.update(level="ERROR", status_message=str(exc))


def flush() -> None:
    """Send buffered spans before the process exits."""
    if _state.tracer is None:
        return
    with _swallow("flush", level=logging.WARNING):
        _state.tracer.flush()


def _create_client(cfg: LangfuseConfig):
    try:
        from langfuse import Langfuse  # type: ignore
    except ImportError:
        logger.warning("Langfuse tracing enabled but the langfuse package is not installed")
        return None
    kwargs = {arg: getattr(cfg, arg) or os.getenv(env) for arg, env in _CLIENT_ENV.items()}
    return Langfuse(**kwargs)


@contextmanager
def _swallow(action: str, level: int = logging.DEBUG) -> Iterator[None]:
    try:
        yield
    except Exception as exc:  # noqa: BLE001
        logger.log(level, "Langfuse %s failed: %s", action, exc)


def _span_text(value: Any) -> str | None:
    """Serialize a span payload, then redact and truncate it per config."""
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=True, default=str)
    cfg = _state.cfg
    if cfg is None:
        return text
    return truncate_text(redact_text(text, cfg.redaction), cfg.max_text_chars)


def _clean_attributes(attrs: dict[str, Any]) -> dict[str, Any]:
    """Drop None values; Langfuse metadata only takes scalars, so stringify the rest."""
    return {
        key: value if isinstance(value, _SCALARS) else str(value)
        for key, value in attrs.items()
        if value is not None
    }
