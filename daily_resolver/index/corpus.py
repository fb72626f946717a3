"""
Full-text corpus index over canonical (NEW) articles.

Backed by an SQLite FTS5 virtual table living in the same database file as
the article store, so indexing a NEW article commits or rolls back together
with the article row itself.

Scores come from FTS5's bm25() with per-column weights. BM25 is negated by
FTS5: more negative means more similar.
"""

from __future__ import annotations

from datetime import date as date_cls, timedelta
import logging
import re
import sqlite3
import threading
from typing import Iterable, Sequence

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from ..config import ThresholdConfig
from ..core.errors import IndexCorruptionError
from ..core.types import Article, Match
from ..store.database import Database
from ..utils.logging import log_event

logger = logging.getLogger(__name__)

FTS_TABLE = "articles_fts"

_CREATE_FTS = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
    article_id UNINDEXED,
    headline,
    summary,
    body,
    tokenize = 'porter unicode61'
)
"""

_MIN_TERM_LENGTH = 3


def build_query(text: str) -> str:
    """Turn free text into an FTS5 OR query of its distinct words.

    Words shorter than three characters are dropped. Each term is quoted so
    FTS5 operators (AND, NOT, NEAR) in article text are matched literally.
    Returns an empty string when no usable term remains.
    """
    cleaned = re.sub(r"[^\w\s]", " ", text.lower())
    seen: dict[str, None] = {}
    for word in cleaned.split():
        word = word.replace("_", "")
        if len(word) >= _MIN_TERM_LENGTH:
            seen.setdefault(word, None)
    return " OR ".join(f'"{word}"' for word in seen)


def resemblance(
    parts: Sequence[str],
    other: Sequence[str],
    weights: Sequence[float],
) -> float:
    """Weighted rapidfuzz ratio (0-100) between two aligned field tuples.

    Fields empty on either side carry no weight.
    """
    total = 0.0
    weighted = 0.0
    for ours, theirs, weight in zip(parts, other, weights):
        if not (ours or "").strip() or not (theirs or "").strip():
            continue
        weighted += weight * fuzz.ratio(ours, theirs, processor=default_process)
        total += weight
    return weighted / total if total else 0.0


class CorpusIndex:
    """Weighted BM25 index of NEW articles.

    Lifecycle: open() -> index()/score() ... -> rebuild() | close().
    A rebuild holds the index lock, so score() and index() wait for it.
    """

    def __init__(self, db: Database, thresholds: ThresholdConfig | None = None):
        self.db = db
        self.thresholds = thresholds or ThresholdConfig()
        self._lock = threading.RLock()
        self._open = False
        self.corrupted = False

    def open(self) -> "CorpusIndex":
        with self._lock:
            self.db.execute(_CREATE_FTS)
            self._open = True
        return self

    def close(self) -> None:
        with self._lock:
            self._open = False

    def __enter__(self) -> "CorpusIndex":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    def set_thresholds(self, thresholds: ThresholdConfig) -> None:
        with self._lock:
            self.thresholds = thresholds

    def index(self, article: Article) -> None:
        """Add a NEW article. Runs inside the caller's transaction."""
        with self._lock:
            self._check_usable()
            self.db.execute(
                f"INSERT INTO {FTS_TABLE} (article_id, headline, summary, body) VALUES (?, ?, ?, ?)",
                (article.id, article.headline, article.summary, article.body),
            )

    def score(
        self,
        text: str,
        batch_date: str,
        exclude_ids: Iterable[str] = (),
        parts: Sequence[str] | None = None,
    ) -> list[Match]:
        """Rank indexed articles against text, most similar first.

        Only articles with pub_date inside the lookback window ending on
        batch_date (inclusive) are considered.

        Every hit is also compared with rapidfuzz, field by field when parts
        (headline, summary, body) are given. A hit whose resemblance reaches
        `near_identical` is the same text and its score is capped at `low`:
        FTS5 clamps the IDF of terms present in half the rows, so raw BM25 for
        identical text shrinks towards zero in a small corpus.
        """
        query = build_query(text)
        if not query:
            return []
        cfg = self.thresholds
        window_start = (
            date_cls.fromisoformat(batch_date) - timedelta(days=cfg.lookback_days)
        ).isoformat()
        excluded = list(dict.fromkeys(exclude_ids))
        exclude_sql = ""
        if excluded:
            exclude_sql = f" AND {FTS_TABLE}.article_id NOT IN ({', '.join('?' for _ in excluded)})"

        sql = (
            f"SELECT {FTS_TABLE}.article_id AS article_id, a.slug, a.headline, a.summary,"
            f" a.body, a.pub_date, bm25({FTS_TABLE}, 0.0, ?, ?, ?) AS score"
            f" FROM {FTS_TABLE} JOIN articles a ON a.id = {FTS_TABLE}.article_id"
            f" WHERE {FTS_TABLE} MATCH ?"
            " AND a.resolution = 'NEW'"
            " AND a.pub_date >= ? AND a.pub_date <= ?"
            f"{exclude_sql}"
            " ORDER BY score ASC LIMIT ?"
        )
        params = (
            cfg.headline_weight,
            cfg.summary_weight,
            cfg.body_weight,
            query,
            window_start,
            batch_date,
            *excluded,
            cfg.top_k,
        )
        with self._lock:
            self._check_usable()
            rows = self.db.execute(sql, params).fetchall()

        matches = []
        for row in rows:
            stored = (row["headline"], row["summary"], row["body"])
            if parts is None:
                similar = resemblance((text,), (" ".join(stored),), (1.0,))
            else:
                similar = resemblance(
                    parts, stored, (cfg.headline_weight, cfg.summary_weight, cfg.body_weight)
                )
            raw = float(row["score"])
            score = min(raw, cfg.low) if similar >= cfg.near_identical else raw
            matches.append(
                Match(
                    article_id=row["article_id"],
                    slug=row["slug"],
                    headline=row["headline"],
                    pub_date=row["pub_date"],
                    score=score,
                    resemblance=round(similar, 2),
                )
            )
        matches.sort(key=lambda m: m.score)
        return matches

    def rebuild(self) -> int:
        """Drop and recreate the index from every NEW article.

        Runs in one exclusive transaction; readers never see a half-built index.
        """
        with self._lock:
            with self.db.transaction("EXCLUSIVE"):
                self.db.execute(f"DROP TABLE IF EXISTS {FTS_TABLE}")
                self.db.execute(_CREATE_FTS)
                self.db.execute(
                    f"INSERT INTO {FTS_TABLE} (article_id, headline, summary, body)"
                    " SELECT id, headline, summary, body FROM articles WHERE resolution = 'NEW'"
                )
                indexed = self.count()
            self._open = True
            self.corrupted = False
        log_event(logger, "Corpus index rebuilt", indexed=indexed)
        return indexed

    def verify(self, date: str | None = None) -> int:
        """Check FTS5 integrity and that every NEW article is indexed exactly once.

        Returns the number of indexed entries. Raises IndexCorruptionError and
        marks the index unusable on any failure.
        """
        with self._lock:
            try:
                self.db.execute(
                    f"INSERT INTO {FTS_TABLE} ({FTS_TABLE}) VALUES ('integrity-check')"
                )
            except sqlite3.DatabaseError as exc:
                self._mark_corrupted(f"integrity-check failed: {exc}", date)
            indexed = self.count()
            distinct = self.db.execute(
                f"SELECT COUNT(DISTINCT article_id) AS n FROM {FTS_TABLE}"
            ).fetchone()["n"]
            articles = self.db.execute(
                "SELECT COUNT(*) AS n FROM articles WHERE resolution = 'NEW'"
            ).fetchone()["n"]
            if indexed != articles or distinct != indexed:
                self._mark_corrupted(
                    f"{indexed} index entries ({distinct} distinct) for {articles} NEW articles",
                    date,
                )
            orphans = self.db.execute(
                f"SELECT COUNT(*) AS n FROM {FTS_TABLE}"
                f" WHERE article_id NOT IN (SELECT id FROM articles WHERE resolution = 'NEW')"
            ).fetchone()["n"]
            if orphans:
                self._mark_corrupted(f"{orphans} index entries without a NEW article", date)
        return indexed

    def count(self) -> int:
        return int(self.db.execute(f"SELECT COUNT(*) AS n FROM {FTS_TABLE}").fetchone()["n"])

    def _mark_corrupted(self, condition: str, date: str | None = None) -> None:
        self.corrupted = True
        logger.error("Corpus index corrupted: %s", condition)
        raise IndexCorruptionError(condition, date)

    def _check_usable(self) -> None:
        if not self._open:
            raise RuntimeError("CorpusIndex is not open")
        if self.corrupted:
            raise IndexCorruptionError("index marked corrupted by a failed verification")
