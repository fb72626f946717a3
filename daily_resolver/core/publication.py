"""
Publication regeneration.

A date's publication is recomputed from the NEW articles of that date only;
duplicates and merged candidates never appear in it. The ordered article ids
and their content are fingerprinted so regenerating an unchanged date writes
nothing, which makes retries safe.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Callable, Sequence

from ..config import ArbitrationConfig, PublicationConfig
from ..core.errors import ArbitrationError
from ..llm.arbitration import call_with_retry, parse_json_object
from ..llm.providers.base import ArbitrationProvider
from ..store.database import Database
from ..store.repository import ArticleStore
from ..utils.logging import log_event
from .types import Article, Publication

logger = logging.getLogger(__name__)

SEVERITY_RANK = {
    "critical": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
    "informational": 4,
}


def fingerprint(articles: Sequence[Article]) -> str:
    """Stable hash of the ordered article set and the fields a publication shows."""
    payload = [
        [a.id, a.headline, a.summary, a.severity or ""]
        for a in articles
    ]
    raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def rank_by_severity(articles: Sequence[Article]) -> list[Article]:
    return sorted(
        articles,
        key=lambda a: (SEVERITY_RANK.get((a.severity or "").lower(), len(SEVERITY_RANK)), a.ordinal),
    )


def compose(date: str, articles: Sequence[Article], cfg: PublicationConfig) -> tuple[str, str]:
    """Deterministic headline and summary for a date's articles."""
    if not articles:
        return f"{cfg.title} {date}: no new stories", "No new stories were published for this date."

    ranked = rank_by_severity(articles)
    lead = ranked[0]
    headline = f"{cfg.title} {date}: {lead.headline}"
    if len(ranked) > 1:
        headline += f" and {len(ranked) - 1} more"

    noun = "story" if len(ranked) == 1 else "stories"
    items = []
    for article in ranked[: cfg.max_summary_items]:
        if article.severity:
            items.append(f"{article.headline} ({article.severity})")
        else:
            items.append(article.headline)
    summary = f"{len(ranked)} new {noun}. " + "; ".join(items) + "."
    return headline, summary


class PublicationRegenerator:
    """Rebuild the publication for a date from its NEW articles."""

    def __init__(
        self,
        db: Database,
        store: ArticleStore,
        cfg: PublicationConfig | None = None,
        writer: ArbitrationProvider | None = None,
        arbitration_cfg: ArbitrationConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.store = store
        self.cfg = cfg or PublicationConfig()
        self.writer = writer
        self.arbitration_cfg = arbitration_cfg or ArbitrationConfig()
        self.sleep = sleep

    def regenerate(self, date: str) -> tuple[Publication, bool]:
        """Write the publication for date.

        Returns:
            The current publication and whether anything was written
        """
        articles = self.store.new_articles_for_date(date)
        digest = fingerprint(articles)
        current = self.store.get_publication(date)
        if current is not None and current.fingerprint == digest:
            logger.debug("Publication for %s unchanged", date)
            return current, False

        headline, summary = self._write_text(date, articles)
        publication = Publication(
            id=f"pub-{date}",
            pub_date=date,
            slug=f"{self.cfg.slug_prefix}-{date}",
            headline=headline,
            summary=summary,
            article_ids=[a.id for a in articles],
            fingerprint=digest,
        )
        with self.db.transaction():
            self.store.save_publication(publication)
        log_event(
            logger,
            "Publication regenerated",
            pub_date=date,
            article_count=publication.article_count,
            fingerprint=digest[:12],
        )
        return self.store.get_publication(date), True

    def _write_text(self, date: str, articles: Sequence[Article]) -> tuple[str, str]:
        if not (self.cfg.use_llm and self.writer is not None and articles):
            return compose(date, articles, self.cfg)
        ranked = rank_by_severity(articles)
        try:
            content = call_with_retry(
                lambda: self.writer.write_publication(date, ranked, self.cfg),
                retries=self.arbitration_cfg.retries,
                backoff_seconds=self.arbitration_cfg.backoff_seconds,
                sleep=self.sleep,
                label=f"publication text for {date}",
            )
            obj = parse_json_object(content)
        except ArbitrationError as exc:
            logger.warning("Publication writer failed for %s, composing instead: %s", date, exc)
            return compose(date, articles, self.cfg)
        headline = obj.get("headline")
        summary = obj.get("summary")
        if not isinstance(headline, str) or not headline.strip() or not isinstance(summary, str):
            logger.warning("Publication writer returned no headline for %s, composing instead", date)
            return compose(date, articles, self.cfg)
        return headline.strip(), summary.strip()
