"""
Arbitration for candidates in the ambiguous similarity tier.

The model is asked whether the candidate is a NEW story, a duplicate (SKIP)
or an UPDATE of the matched article. Its reply is validated strictly: a
malformed or incomplete reply is an ArbitrationError, never patched up
into a best guess. Transport failures, 429 and 5xx responses are retried
with exponential backoff before giving up.
"""

from __future__ import annotations

from datetime import datetime
import json
import logging
import time
from typing import Any, Callable, TypeVar
from urllib.parse import urlparse

import httpx

from ..config import ArbitrationConfig
from ..core.errors import ArbitrationError
from ..core.types import (
    SEVERITY_CHANGES,
    ArbitrationDecision,
    Article,
    Candidate,
    DuplicateStory,
    MergeContent,
    MergeStory,
    NewStory,
    Source,
)
from ..utils.logging import log_event
from .providers.base import ArbitrationProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DECISIONS = ("NEW", "SKIP", "UPDATE")
_UPDATE_FIELDS = ("datetime", "summary", "content", "sources", "severity_change")


class Arbitrator:
    """Ask a provider to settle ambiguous matches."""

    def __init__(
        self,
        provider: ArbitrationProvider,
        cfg: ArbitrationConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.cfg = cfg or ArbitrationConfig()
        self.sleep = sleep
        self.calls = 0

    def arbitrate(self, candidate: Candidate, existing: Article) -> ArbitrationDecision:
        """Return NewStory, DuplicateStory or MergeStory; raise ArbitrationError otherwise."""
        self.calls += 1
        content = call_with_retry(
            lambda: self.provider.arbitrate(candidate, existing),
            retries=self.cfg.retries,
            backoff_seconds=self.cfg.backoff_seconds,
            sleep=self.sleep,
            label=f"arbitration of {candidate.id}",
        )
        decision = parse_arbitration_payload(content)
        log_event(
            logger,
            "Arbitration decided",
            candidate_id=candidate.id,
            matched_article_id=existing.id,
            decision=type(decision).__name__,
        )
        return decision


def call_with_retry(
    fn: Callable[[], T],
    retries: int,
    backoff_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "provider call",
) -> T:
    """Run fn, retrying transient HTTP failures.

    Any failure ends as an ArbitrationError: retries exhausted, a rejected
    request, or a reply the provider could not decode (a 200 with a non-JSON
    body raises ValueError from httpx).
    """
    attempts = max(0, retries) + 1
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if not _is_retryable_status(status):
                raise ArbitrationError(f"{label} rejected with HTTP {status}") from exc
            error: Exception = exc
        except httpx.TransportError as exc:
            error = exc
        except ArbitrationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ArbitrationError(f"{label} failed: {type(exc).__name__}: {exc}") from exc
        if attempt == attempts:
            raise ArbitrationError(
                f"{label} failed after {attempts} attempt(s): {type(error).__name__}: {error}"
            ) from error
        delay = backoff_seconds * (2 ** (attempt - 1))
        logger.warning(
            "%s failed (attempt %d/%d): %s; retrying in %.1fs",
            label,
            attempt,
            attempts,
            error,
            delay,
        )
        sleep(delay)
    raise AssertionError("unreachable")


def parse_arbitration_payload(content: str) -> ArbitrationDecision:
    """Validate a raw model reply into an arbitration decision.

    Raises:
        ArbitrationError: unparseable JSON, unknown decision, missing
            reasoning, or an UPDATE without a complete update object.
    """
    obj = parse_json_object(content)

    decision = obj.get("decision")
    if decision not in _DECISIONS:
        raise ArbitrationError(f"Unknown decision {decision!r}", raw_response=content)

    reasoning = obj.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        raise ArbitrationError("Reply is missing reasoning", raw_response=content)
    reasoning = reasoning.strip()

    if decision == "NEW":
        return NewStory(reasoning=reasoning)
    if decision == "SKIP":
        return DuplicateStory(reasoning=reasoning)
    return MergeStory(reasoning=reasoning, merge=_parse_update(obj.get("update"), content))


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse a JSON object from model text, tolerating a ```json fence."""
    if not content or not content.strip():
        raise ArbitrationError("Empty reply", raw_response=content)
    try:
        obj = json.loads(content)
    except json.JSONDecodeError:
        fenced = _extract_fenced_json(content)
        if fenced is None:
            raise ArbitrationError("Reply is not valid JSON", raw_response=content) from None
        try:
            obj = json.loads(fenced)
        except json.JSONDecodeError as exc:
            raise ArbitrationError(f"Reply is not valid JSON: {exc}", raw_response=content) from exc
    if not isinstance(obj, dict):
        raise ArbitrationError("Reply is not a JSON object", raw_response=content)
    return obj


def _parse_update(update: Any, content: str) -> MergeContent:
    if not isinstance(update, dict):
        raise ArbitrationError("UPDATE decision without an update object", raw_response=content)
    missing = [name for name in _UPDATE_FIELDS if name not in update]
    if missing:
        raise ArbitrationError(
            f"UPDATE is missing field(s): {', '.join(missing)}", raw_response=content
        )

    stamp = update["datetime"]
    if not isinstance(stamp, str) or not _is_iso_datetime(stamp):
        raise ArbitrationError(f"UPDATE datetime is not ISO 8601: {stamp!r}", raw_response=content)

    texts = {}
    for name in ("summary", "content"):
        value = update[name]
        if not isinstance(value, str) or not value.strip():
            raise ArbitrationError(f"UPDATE {name} is empty", raw_response=content)
        texts[name] = value.strip()

    severity_change = update["severity_change"]
    if severity_change not in SEVERITY_CHANGES:
        raise ArbitrationError(
            f"UPDATE severity_change {severity_change!r} is not one of {', '.join(SEVERITY_CHANGES)}",
            raw_response=content,
        )

    raw_sources = update["sources"]
    if not isinstance(raw_sources, list) or not raw_sources:
        raise ArbitrationError("UPDATE needs at least one source", raw_response=content)
    sources: list[Source] = []
    for item in raw_sources:
        if not isinstance(item, dict) or not isinstance(item.get("url"), str) or not item["url"].strip():
            raise ArbitrationError(f"UPDATE source without url: {item!r}", raw_response=content)
        url = item["url"].strip()
        sources.append(
            Source(
                url=url,
                title=str(item.get("title") or ""),
                website=urlparse(url).netloc or None,
            )
        )

    return MergeContent(
        datetime=stamp,
        summary=texts["summary"],
        content=texts["content"],
        sources=sources,
        severity_change=severity_change,
    )


def _is_iso_datetime(value: str) -> bool:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def _extract_fenced_json(content: str) -> str | None:
    lines = content.splitlines()
    start_idx = None
    for idx, line in enumerate(lines):
        if line.strip().startswith("```") and "json" in line.lower():
            start_idx = idx + 1
            break
    if start_idx is None:
        return None
    for idx in range(start_idx, len(lines)):
        if lines[idx].strip().startswith("```"):
            snippet = "\n".join(lines[start_idx:idx]).strip()
            return snippet or None
    return None
