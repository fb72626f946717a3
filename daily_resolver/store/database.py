"""
SQLite connection and schema for the article store.

One database file holds every persisted table: articles and their sources,
append-only updates, candidates with their resolution records, publications,
pipeline run logs, plus the FTS5 corpus index (owned by CorpusIndex).

The connection runs in autocommit mode; all writes go through
`Database.transaction()` which issues explicit BEGIN/COMMIT/ROLLBACK so a
single candidate's resolution is all-or-nothing.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
from pathlib import Path
import sqlite3
from typing import Iterator

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    headline TEXT NOT NULL,
    summary TEXT NOT NULL,
    body TEXT NOT NULL,
    severity TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    entities TEXT NOT NULL DEFAULT '[]',
    pub_date TEXT NOT NULL,
    ordinal INTEGER NOT NULL DEFAULT 0,
    resolution TEXT NOT NULL DEFAULT 'NEW' CHECK(resolution = 'NEW'),
    has_updates INTEGER NOT NULL DEFAULT 0,
    update_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_pub_date ON articles(pub_date, ordinal);

CREATE TABLE IF NOT EXISTS article_sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id TEXT NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    website TEXT NOT NULL DEFAULT '',
    date TEXT,
    UNIQUE(article_id, url, website)
);

CREATE INDEX IF NOT EXISTS idx_article_sources_article ON article_sources(article_id);

CREATE TABLE IF NOT EXISTS article_updates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id TEXT NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    source_candidate_id TEXT NOT NULL,
    datetime TEXT NOT NULL,
    summary TEXT NOT NULL,
    content TEXT NOT NULL,
    severity_change TEXT NOT NULL DEFAULT 'unknown'
        CHECK(severity_change IN ('increased', 'decreased', 'unchanged', 'unknown')),
    created_at TEXT NOT NULL,
    UNIQUE(article_id, source_candidate_id)
);

CREATE INDEX IF NOT EXISTS idx_article_updates_article ON article_updates(article_id, datetime);

CREATE TABLE IF NOT EXISTS article_update_sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    update_id INTEGER NOT NULL REFERENCES article_updates(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    website TEXT NOT NULL DEFAULT '',
    date TEXT
);

CREATE TABLE IF NOT EXISTS candidates (
    id TEXT PRIMARY KEY,
    batch_date TEXT NOT NULL,
    ordinal INTEGER NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'resolved', 'failed')),
    resolution TEXT CHECK(resolution IS NULL OR resolution IN
        ('NEW', 'DUPLICATE-AUTO', 'DUPLICATE-CONFIRMED', 'MERGE-PENDING', 'MERGED')),
    similarity_score REAL,
    matched_article_id TEXT,
    reasoning TEXT NOT NULL DEFAULT '{}',
    method TEXT CHECK(method IS NULL OR method IN ('automatic', 'llm')),
    error TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    resolved_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_candidates_batch ON candidates(batch_date, status, ordinal);
CREATE INDEX IF NOT EXISTS idx_candidates_matched ON candidates(matched_article_id)
    WHERE matched_article_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS publications (
    id TEXT PRIMARY KEY,
    pub_date TEXT NOT NULL UNIQUE,
    slug TEXT NOT NULL,
    headline TEXT NOT NULL,
    summary TEXT NOT NULL,
    article_ids TEXT NOT NULL DEFAULT '[]',
    article_count INTEGER NOT NULL DEFAULT 0,
    fingerprint TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pipeline_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    command TEXT NOT NULL,
    date_processed TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('STARTED', 'SUCCESS', 'FAILED', 'SKIPPED')),
    started_at TEXT NOT NULL,
    completed_at TEXT,
    counts TEXT,
    metadata TEXT,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_pipeline_runs_date ON pipeline_runs(date_processed, command);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Database:
    """Thin wrapper around one SQLite connection with explicit transactions."""

    def __init__(self, path: str | Path, busy_timeout_ms: int = 5000):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        self.conn.execute("PRAGMA foreign_keys = ON")
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.executescript(SCHEMA)
        logger.debug("SQLite ready at %s", self.path)

    @contextmanager
    def transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        """Run the enclosed writes atomically.

        Nested calls join the outer transaction; only the outermost block
        commits or rolls back.
        """
        if self.conn.in_transaction:
            yield self.conn
            return
        self.conn.execute(f"BEGIN {mode}")
        try:
            yield self.conn
        except BaseException:
            # SQLite may already have rolled back on some errors.
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")

    def execute(self, sql: str, params: tuple | dict = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    def close(self) -> None:
        self.conn.close()
