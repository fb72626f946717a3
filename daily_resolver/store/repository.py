"""Article store: typed reads and writes over the resolver tables.

Every mutating method expects to run inside `Database.transaction()` opened
by the caller (the applier, ingest step or publication regenerator), so that
one logical operation commits or rolls back as a unit.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable

from rapidfuzz import fuzz

from ..core.errors import ConsistencyError
from ..core.types import (
    Article,
    ArticleUpdate,
    Candidate,
    CandidateStatus,
    Publication,
    Resolution,
    ResolutionRecord,
    Source,
)
from .database import Database, utc_now

logger = logging.getLogger(__name__)


class ArticleStore:
    """Relational persistence for candidates, articles, updates and publications."""

    def __init__(self, db: Database):
        self.db = db

    # -- candidates ----------------------------------------------------------

    def insert_candidates(self, candidates: Iterable[Candidate]) -> int:
        now = utc_now()
        count = 0
        for candidate in candidates:
            self.db.execute(
                "INSERT INTO candidates (id, batch_date, ordinal, payload, status, created_at)"
                " VALUES (?, ?, ?, ?, 'pending', ?)",
                (
                    candidate.id,
                    candidate.pub_date,
                    candidate.ordinal,
                    json.dumps(_candidate_payload(candidate), ensure_ascii=False),
                    now,
                ),
            )
            count += 1
        return count

    def candidate_exists(self, candidate_id: str) -> bool:
        row = self.db.execute("SELECT 1 FROM candidates WHERE id = ?", (candidate_id,)).fetchone()
        return row is not None

    def count_candidates(self, date: str) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) AS n FROM candidates WHERE batch_date = ?", (date,)
        ).fetchone()
        return int(row["n"])

    def count_unresolved(self, date: str) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) AS n FROM candidates WHERE batch_date = ? AND status != 'resolved'",
            (date,),
        ).fetchone()
        return int(row["n"])

    def unresolved_candidates(self, date: str) -> list[Candidate]:
        """Pending and previously failed candidates for a date, in batch order."""
        rows = self.db.execute(
            "SELECT * FROM candidates WHERE batch_date = ? AND status != 'resolved'"
            " ORDER BY ordinal, id",
            (date,),
        ).fetchall()
        return [_row_to_candidate(row) for row in rows]

    def get_candidate(self, candidate_id: str) -> Candidate:
        row = self.db.execute("SELECT * FROM candidates WHERE id = ?", (candidate_id,)).fetchone()
        if row is None:
            raise KeyError(f"Unknown candidate: {candidate_id}")
        return _row_to_candidate(row)

    def get_record(self, candidate_id: str) -> ResolutionRecord | None:
        row = self.db.execute("SELECT * FROM candidates WHERE id = ?", (candidate_id,)).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def records_for_date(self, date: str) -> list[ResolutionRecord]:
        rows = self.db.execute(
            "SELECT * FROM candidates WHERE batch_date = ? ORDER BY ordinal, id", (date,)
        ).fetchall()
        return [_row_to_record(row) for row in rows]

    def write_resolution(
        self,
        candidate_id: str,
        resolution: Resolution,
        score: float | None,
        matched_article_id: str | None,
        reasoning: dict[str, Any],
        method: str,
    ) -> None:
        status = (
            CandidateStatus.PENDING
            if resolution is Resolution.MERGE_PENDING
            else CandidateStatus.RESOLVED
        )
        self.db.execute(
            "UPDATE candidates SET status = ?, resolution = ?, similarity_score = ?,"
            " matched_article_id = ?, reasoning = ?, method = ?, error = NULL,"
            " attempts = attempts + 1, resolved_at = ?"
            " WHERE id = ?",
            (
                status.value,
                resolution.value,
                score,
                matched_article_id,
                json.dumps(reasoning, ensure_ascii=False, default=str),
                method,
                utc_now() if status is CandidateStatus.RESOLVED else None,
                candidate_id,
            ),
        )

    def complete_merge(self, candidate_id: str) -> None:
        cursor = self.db.execute(
            "UPDATE candidates SET status = 'resolved', resolution = 'MERGED', resolved_at = ?"
            " WHERE id = ? AND resolution = 'MERGE-PENDING'",
            (utc_now(), candidate_id),
        )
        if cursor.rowcount != 1:
            raise ConsistencyError(f"Candidate {candidate_id} is not MERGE-PENDING")

    def mark_failed(
        self,
        candidate_id: str,
        error: str,
        score: float | None = None,
        matched_article_id: str | None = None,
    ) -> None:
        """Record an arbitration failure; the candidate stays unresolved."""
        self.db.execute(
            "UPDATE candidates SET status = 'failed', resolution = NULL, similarity_score = ?,"
            " matched_article_id = ?, error = ?, attempts = attempts + 1"
            " WHERE id = ? AND status != 'resolved'",
            (score, matched_article_id, error, candidate_id),
        )

    def note_pending_error(self, candidate_id: str, error: str) -> None:
        """Record an application failure; the candidate stays pending for retry."""
        self.db.execute(
            "UPDATE candidates SET status = 'pending', resolution = NULL, error = ?,"
            " attempts = attempts + 1 WHERE id = ? AND status != 'resolved'",
            (error, candidate_id),
        )

    # -- articles ------------------------------------------------------------

    def article_exists(self, article_id: str) -> bool:
        row = self.db.execute("SELECT 1 FROM articles WHERE id = ?", (article_id,)).fetchone()
        return row is not None

    def slug_taken(self, slug: str) -> bool:
        row = self.db.execute("SELECT 1 FROM articles WHERE slug = ?", (slug,)).fetchone()
        return row is not None

    def insert_article(self, article: Article) -> None:
        if self.article_exists(article.id):
            raise ConsistencyError(f"Article {article.id} already exists")
        now = utc_now()
        self.db.execute(
            "INSERT INTO articles (id, slug, headline, summary, body, severity, tags, entities,"
            " pub_date, ordinal, resolution, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'NEW', ?, ?)",
            (
                article.id,
                article.slug,
                article.headline,
                article.summary,
                article.body,
                article.severity,
                json.dumps(article.tags, ensure_ascii=False),
                json.dumps(article.entities, ensure_ascii=False),
                article.pub_date,
                article.ordinal,
                article.created_at or now,
                article.updated_at or now,
            ),
        )
        self.add_sources(article.id, article.sources)

    def get_article(self, article_id: str) -> Article:
        """Fetch an article, following candidate redirects to the canonical story."""
        seen: set[str] = set()
        current = article_id
        while current not in seen:
            seen.add(current)
            article = self._load_article(current)
            if article is not None:
                return article
            record = self.get_record(current)
            if record is None:
                break
            if record.status is not CandidateStatus.RESOLVED or record.resolution is None:
                raise KeyError(f"Candidate {current} is not resolved yet")
            if not record.resolution.redirects or not record.matched_article_id:
                raise ConsistencyError(
                    f"Candidate {current} resolved {record.resolution.value} but has no article"
                )
            current = record.matched_article_id
        raise KeyError(f"Unknown article: {article_id}")

    def get_article_strict(self, article_id: str) -> Article:
        """Fetch an article by its own id only; redirected ids are rejected."""
        article = self._load_article(article_id)
        if article is not None:
            return article
        record = self.get_record(article_id)
        if record is not None and record.resolution is not None and record.resolution.redirects:
            raise ConsistencyError(
                f"{article_id} was resolved {record.resolution.value} into "
                f"{record.matched_article_id}; look it up through get_article()"
            )
        raise KeyError(f"Unknown article: {article_id}")

    def new_articles_for_date(self, date: str) -> list[Article]:
        rows = self.db.execute(
            "SELECT * FROM articles WHERE pub_date = ? AND resolution = 'NEW'"
            " ORDER BY ordinal, created_at, id",
            (date,),
        ).fetchall()
        return [self._hydrate(row) for row in rows]

    def count_new_articles(self) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) AS n FROM articles WHERE resolution = 'NEW'"
        ).fetchone()
        return int(row["n"])

    def add_sources(self, article_id: str, sources: Iterable[Source]) -> int:
        added = 0
        for source in sources:
            cursor = self.db.execute(
                "INSERT OR IGNORE INTO article_sources (article_id, url, title, website, date)"
                " VALUES (?, ?, ?, ?, ?)",
                (article_id, source.url, source.title or "", source.website or "", source.date),
            )
            added += cursor.rowcount
        return added

    def merge_sources(self, article_id: str, sources: Iterable[Source], threshold: int = 92) -> int:
        """Fold sources from a duplicate into the canonical article.

        A source is skipped when the same url/website is present, or when the
        same website already has a near-identical title.
        """
        existing = self.get_sources(article_id)
        keys = {(s.url, s.website or "") for s in existing}
        kept: list[Source] = []
        for source in sources:
            key = (source.url, source.website or "")
            if key in keys:
                continue
            if _is_similar_title(source, existing + kept, threshold):
                continue
            keys.add(key)
            kept.append(source)
        added = self.add_sources(article_id, kept)
        if added:
            logger.debug("Folded %d source(s) into %s", added, article_id)
        return added

    def get_sources(self, article_id: str) -> list[Source]:
        rows = self.db.execute(
            "SELECT url, title, website, date FROM article_sources WHERE article_id = ? ORDER BY id",
            (article_id,),
        ).fetchall()
        return [_row_to_source(row) for row in rows]

    # -- updates -------------------------------------------------------------

    def find_update(self, article_id: str, source_candidate_id: str) -> ArticleUpdate | None:
        row = self.db.execute(
            "SELECT * FROM article_updates WHERE article_id = ? AND source_candidate_id = ?",
            (article_id, source_candidate_id),
        ).fetchone()
        if row is None:
            return None
        return self._hydrate_update(row)

    def add_update(self, update: ArticleUpdate) -> int:
        """Append an update to its canonical article and flag the article."""
        if not self.article_exists(update.article_id):
            raise ConsistencyError(f"Cannot update missing article {update.article_id}")
        cursor = self.db.execute(
            "INSERT INTO article_updates (article_id, source_candidate_id, datetime, summary,"
            " content, severity_change, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                update.article_id,
                update.source_candidate_id,
                update.datetime,
                update.summary,
                update.content,
                update.severity_change,
                utc_now(),
            ),
        )
        update_id = int(cursor.lastrowid)
        for source in update.sources:
            self.db.execute(
                "INSERT INTO article_update_sources (update_id, url, title, website, date)"
                " VALUES (?, ?, ?, ?, ?)",
                (update_id, source.url, source.title or "", source.website or "", source.date),
            )
        self.db.execute(
            "UPDATE articles SET has_updates = 1, update_count = update_count + 1,"
            " updated_at = ? WHERE id = ?",
            (utc_now(), update.article_id),
        )
        update.id = update_id
        return update_id

    def get_updates(self, article_id: str) -> list[ArticleUpdate]:
        rows = self.db.execute(
            "SELECT * FROM article_updates WHERE article_id = ? ORDER BY datetime, id",
            (article_id,),
        ).fetchall()
        return [self._hydrate_update(row) for row in rows]

    # -- publications --------------------------------------------------------

    def get_publication(self, date: str) -> Publication | None:
        row = self.db.execute("SELECT * FROM publications WHERE pub_date = ?", (date,)).fetchone()
        if row is None:
            return None
        return Publication(
            id=row["id"],
            pub_date=row["pub_date"],
            slug=row["slug"],
            headline=row["headline"],
            summary=row["summary"],
            article_ids=json.loads(row["article_ids"]),
            fingerprint=row["fingerprint"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save_publication(self, publication: Publication) -> None:
        now = utc_now()
        self.db.execute(
            "INSERT INTO publications (id, pub_date, slug, headline, summary, article_ids,"
            " article_count, fingerprint, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(pub_date) DO UPDATE SET slug = excluded.slug,"
            " headline = excluded.headline, summary = excluded.summary,"
            " article_ids = excluded.article_ids, article_count = excluded.article_count,"
            " fingerprint = excluded.fingerprint, updated_at = excluded.updated_at",
            (
                publication.id,
                publication.pub_date,
                publication.slug,
                publication.headline,
                publication.summary,
                json.dumps(publication.article_ids),
                publication.article_count,
                publication.fingerprint,
                now,
                now,
            ),
        )

    # -- pipeline runs -------------------------------------------------------

    def start_run(self, command: str, date: str, metadata: dict[str, Any] | None = None) -> int:
        cursor = self.db.execute(
            "INSERT INTO pipeline_runs (command, date_processed, status, started_at, metadata)"
            " VALUES (?, ?, 'STARTED', ?, ?)",
            (command, date, utc_now(), json.dumps(metadata or {}, default=str)),
        )
        return int(cursor.lastrowid)

    def finish_run(
        self,
        run_id: int,
        status: str,
        counts: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        self.db.execute(
            "UPDATE pipeline_runs SET status = ?, completed_at = ?, counts = ?, error_message = ?"
            " WHERE id = ?",
            (status, utc_now(), json.dumps(counts or {}, default=str), error, run_id),
        )

    # -- reporting -----------------------------------------------------------

    def resolution_stats(self, date: str | None = None) -> dict[str, Any]:
        where = "WHERE batch_date = ?" if date else ""
        params: tuple = (date,) if date else ()
        by_status = self.db.execute(
            f"SELECT status, COALESCE(resolution, '-') AS resolution, COUNT(*) AS n,"
            f" AVG(similarity_score) AS avg_score FROM candidates {where}"
            " GROUP BY status, resolution ORDER BY status, resolution",
            params,
        ).fetchall()
        by_method = self.db.execute(
            f"SELECT COALESCE(method, '-') AS method, COUNT(*) AS n FROM candidates {where}"
            " GROUP BY method",
            params,
        ).fetchall()
        return {
            "by_resolution": [
                {
                    "status": row["status"],
                    "resolution": row["resolution"],
                    "count": row["n"],
                    "avg_score": row["avg_score"],
                }
                for row in by_status
            ],
            "by_method": {row["method"]: row["n"] for row in by_method},
            "articles": self.count_new_articles(),
        }

    # -- internals -----------------------------------------------------------

    def _load_article(self, article_id: str) -> Article | None:
        row = self.db.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        if row is None:
            return None
        article = self._hydrate(row)
        article.updates = self.get_updates(article.id)
        return article

    def _hydrate(self, row: sqlite3.Row) -> Article:
        return Article(
            id=row["id"],
            slug=row["slug"],
            headline=row["headline"],
            summary=row["summary"],
            body=row["body"],
            pub_date=row["pub_date"],
            ordinal=row["ordinal"],
            severity=row["severity"],
            tags=json.loads(row["tags"]),
            entities=json.loads(row["entities"]),
            resolution=Resolution(row["resolution"]),
            has_updates=bool(row["has_updates"]),
            update_count=row["update_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            sources=self.get_sources(row["id"]),
        )

    def _hydrate_update(self, row: sqlite3.Row) -> ArticleUpdate:
        sources = self.db.execute(
            "SELECT url, title, website, date FROM article_update_sources"
            " WHERE update_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()
        return ArticleUpdate(
            id=row["id"],
            article_id=row["article_id"],
            source_candidate_id=row["source_candidate_id"],
            datetime=row["datetime"],
            summary=row["summary"],
            content=row["content"],
            severity_change=row["severity_change"],
            sources=[_row_to_source(s) for s in sources],
        )


def _candidate_payload(candidate: Candidate) -> dict[str, Any]:
    return {
        "headline": candidate.headline,
        "summary": candidate.summary,
        "body": candidate.body,
        "severity": candidate.severity,
        "tags": candidate.tags,
        "entities": candidate.entities,
        "sources": [s.to_dict() for s in candidate.sources],
    }


def _row_to_candidate(row: sqlite3.Row) -> Candidate:
    payload = json.loads(row["payload"])
    return Candidate(
        id=row["id"],
        headline=payload["headline"],
        summary=payload["summary"],
        body=payload["body"],
        pub_date=row["batch_date"],
        ordinal=row["ordinal"],
        severity=payload.get("severity"),
        tags=payload.get("tags") or [],
        entities=payload.get("entities") or [],
        sources=[Source(**s) for s in payload.get("sources") or []],
    )


def _row_to_record(row: sqlite3.Row) -> ResolutionRecord:
    return ResolutionRecord(
        candidate_id=row["id"],
        batch_date=row["batch_date"],
        status=CandidateStatus(row["status"]),
        resolution=Resolution(row["resolution"]) if row["resolution"] else None,
        similarity_score=row["similarity_score"],
        matched_article_id=row["matched_article_id"],
        reasoning=json.loads(row["reasoning"] or "{}"),
        method=row["method"],
        error=row["error"],
        attempts=row["attempts"],
        resolved_at=row["resolved_at"],
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        url=row["url"],
        title=row["title"] or "",
        website=row["website"] or None,
        date=row["date"],
    )


def _is_similar_title(source: Source, existing: list[Source], threshold: int) -> bool:
    """Check if a same-website source already carries a near-identical title.

    Uses rapidfuzz's ratio, the Levenshtein similarity as a percentage.
    """
    if not source.title:
        return False
    for other in existing:
        if (other.website or "") != (source.website or ""):
            continue
        if other.title and fuzz.ratio(source.title.lower(), other.title.lower()) >= threshold:
            return True
    return False
