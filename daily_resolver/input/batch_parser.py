"""
Parser for candidate batch files.

A batch is one JSON document per date produced by the structuring step:

    {
        "date": "2025-10-14",
        "candidates": [
            {
                "id": "9f1c...",
                "headline": "Ransomware group X breaches Company Y",
                "summary": "Short summary",
                "body": "Full report text",
                "severity": "high",
                "tags": ["ransomware"],
                "entities": [{"type": "threat_actor", "name": "X"}],
                "sources": [{"url": "https://...", "title": "...", "website": "...", "date": "..."}]
            }
        ]
    }

`severity`, `tags`, `entities` and `sources` are optional. Any structural
problem is a PreconditionError: a batch is either taken whole or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date as date_cls
import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from ..core.errors import PreconditionError
from ..core.types import Candidate, Source

logger = logging.getLogger(__name__)

_REQUIRED_TEXT = ("id", "headline", "summary", "body")


@dataclass
class Batch:
    date: str
    candidates: list[Candidate]


def load_batch(path: str | Path, expected_date: str | None = None) -> Batch:
    """Read and validate a batch file."""
    path = Path(path)
    if not path.exists():
        raise PreconditionError(expected_date, f"batch file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PreconditionError(expected_date, f"batch file is not valid JSON: {exc}") from exc
    return parse_batch(data, expected_date)


def parse_batch(data: Any, expected_date: str | None = None) -> Batch:
    """Validate a decoded batch document into Candidates.

    Raises:
        PreconditionError: missing/invalid date, date mismatch, empty or
            malformed candidate list, or repeated candidate ids
    """
    if not isinstance(data, dict):
        raise PreconditionError(expected_date, "batch must be a JSON object")

    batch_date = data.get("date")
    if not isinstance(batch_date, str) or not _is_iso_date(batch_date):
        raise PreconditionError(expected_date, f"batch date missing or not YYYY-MM-DD: {batch_date!r}")
    if expected_date and batch_date != expected_date:
        raise PreconditionError(
            expected_date, f"batch file is for {batch_date}, expected {expected_date}"
        )

    items = data.get("candidates")
    if not isinstance(items, list) or not items:
        raise PreconditionError(batch_date, "batch has no candidates")

    candidates: list[Candidate] = []
    seen: set[str] = set()
    for ordinal, item in enumerate(items):
        candidate = _parse_candidate(item, batch_date, ordinal)
        if candidate.id in seen:
            raise PreconditionError(batch_date, f"candidate id {candidate.id!r} appears twice")
        seen.add(candidate.id)
        candidates.append(candidate)

    logger.info("Parsed batch %s with %d candidates", batch_date, len(candidates))
    return Batch(date=batch_date, candidates=candidates)


def _parse_candidate(item: Any, batch_date: str, ordinal: int) -> Candidate:
    where = f"candidate #{ordinal + 1}"
    if not isinstance(item, dict):
        raise PreconditionError(batch_date, f"{where} is not an object")
    for name in _REQUIRED_TEXT:
        value = item.get(name)
        if not isinstance(value, str) or not value.strip():
            raise PreconditionError(batch_date, f"{where} is missing {name}")

    tags = item.get("tags") or []
    entities = item.get("entities") or []
    if not isinstance(tags, list) or not isinstance(entities, list):
        raise PreconditionError(batch_date, f"{where}: tags and entities must be lists")

    severity = item.get("severity")
    return Candidate(
        id=item["id"].strip(),
        headline=item["headline"].strip(),
        summary=item["summary"].strip(),
        body=item["body"].strip(),
        pub_date=batch_date,
        ordinal=ordinal,
        severity=str(severity).strip().lower() if severity else None,
        tags=[str(t) for t in tags],
        entities=entities,
        sources=_parse_sources(item.get("sources") or [], batch_date, where),
    )


def _parse_sources(raw: Any, batch_date: str, where: str) -> list[Source]:
    if not isinstance(raw, list):
        raise PreconditionError(batch_date, f"{where}: sources must be a list")
    sources: list[Source] = []
    for entry in raw:
        if not isinstance(entry, dict) or not isinstance(entry.get("url"), str) or not entry["url"].strip():
            raise PreconditionError(batch_date, f"{where}: every source needs a url")
        url = entry["url"].strip()
        website = entry.get("website") or urlparse(url).netloc or None
        sources.append(
            Source(
                url=url,
                title=str(entry.get("title") or ""),
                website=website,
                date=entry.get("date"),
            )
        )
    return sources


def _is_iso_date(value: str) -> bool:
    try:
        date_cls.fromisoformat(value)
    except ValueError:
        return False
    return len(value) == 10
