"""
Core data types for the resolution engine.

This module defines the fundamental data structures used throughout the pipeline:
- Candidate: A structured article proposed for ingestion in a batch
- Article: A canonical, indexed story with permanent id/slug
- ArticleUpdate: Append-only new information merged into an Article
- ResolutionRecord: The audit record of how a candidate was resolved
- Publication: The regenerated digest of NEW articles for a date
- Match / Classification: Index scoring and tiering results
- NewStory / DuplicateStory / MergeStory: Validated arbitration decisions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Resolution(str, Enum):
    NEW = "NEW"
    DUPLICATE_AUTO = "DUPLICATE-AUTO"
    DUPLICATE_CONFIRMED = "DUPLICATE-CONFIRMED"
    MERGE_PENDING = "MERGE-PENDING"
    MERGED = "MERGED"

    @property
    def redirects(self) -> bool:
        """True when a candidate with this resolution points at another article."""
        return self in (Resolution.DUPLICATE_AUTO, Resolution.DUPLICATE_CONFIRMED, Resolution.MERGED)


class CandidateStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class Tier(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    AMBIGUOUS = "ambiguous"


SEVERITY_CHANGES = ("increased", "decreased", "unchanged", "unknown")


@dataclass
class Source:
    """A reference supporting an article or update.

    Attributes:
        url: Link to the source
        title: Source headline
        website: Publishing site name, if known
        date: Source publication date, if known
    """
    url: str
    title: str = ""
    website: str | None = None
    date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "website": self.website, "date": self.date}


@dataclass
class Candidate:
    """An unresolved article proposed for ingestion.

    Attributes:
        id: Stable id assigned by the structuring step; becomes the article id if NEW
        headline: Article headline
        summary: Short summary
        body: Full report text
        pub_date: Batch date (YYYY-MM-DD)
        ordinal: Position within the batch, used for ordering
        severity: Severity label (e.g. "critical", "high")
        tags: Free-form tags
        entities: Structured entities extracted upstream
        sources: Supporting sources
    """
    id: str
    headline: str
    summary: str
    body: str
    pub_date: str
    ordinal: int = 0
    severity: str | None = None
    tags: list[str] = field(default_factory=list)
    entities: list[dict[str, Any]] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)

    @property
    def text(self) -> str:
        return f"{self.headline} {self.summary} {self.body}"


@dataclass
class ArticleUpdate:
    """New information appended to a canonical article.

    Attributes:
        article_id: Canonical article receiving the update
        source_candidate_id: Candidate the update was extracted from (audit only)
        datetime: ISO 8601 time of the update
        summary: Short description of what changed
        content: Standalone description of the new information
        severity_change: One of SEVERITY_CHANGES
        sources: Sources backing the update
        id: Row id once persisted
    """
    article_id: str
    source_candidate_id: str
    datetime: str
    summary: str
    content: str
    severity_change: str = "unknown"
    sources: list[Source] = field(default_factory=list)
    id: int | None = None


@dataclass
class Article:
    """A canonical published story.

    The id and slug are permanent once the article exists.
    """
    id: str
    slug: str
    headline: str
    summary: str
    body: str
    pub_date: str
    ordinal: int = 0
    severity: str | None = None
    tags: list[str] = field(default_factory=list)
    entities: list[dict[str, Any]] = field(default_factory=list)
    resolution: Resolution = Resolution.NEW
    has_updates: bool = False
    update_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    sources: list[Source] = field(default_factory=list)
    updates: list[ArticleUpdate] = field(default_factory=list)

    @property
    def text(self) -> str:
        return f"{self.headline} {self.summary} {self.body}"


@dataclass
class ResolutionRecord:
    """How a candidate was resolved (or why it is not yet resolved).

    Attributes:
        candidate_id: The candidate this record belongs to
        batch_date: Batch date of the candidate
        status: pending, resolved or failed
        resolution: Final Resolution when status is resolved
        similarity_score: Top BM25 score, None when nothing matched
        matched_article_id: Canonical article for duplicates and merges
        reasoning: Machine-readable reasoning payload
        method: "automatic" or "llm"
        error: Last failure message for failed/pending candidates
        attempts: Number of resolution attempts so far
    """
    candidate_id: str
    batch_date: str
    status: CandidateStatus = CandidateStatus.PENDING
    resolution: Resolution | None = None
    similarity_score: float | None = None
    matched_article_id: str | None = None
    reasoning: dict[str, Any] = field(default_factory=dict)
    method: str | None = None
    error: str | None = None
    attempts: int = 0
    resolved_at: str | None = None


@dataclass
class Publication:
    """The digest for one date, built only from NEW articles."""
    id: str
    pub_date: str
    slug: str
    headline: str
    summary: str
    article_ids: list[str] = field(default_factory=list)
    fingerprint: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def article_count(self) -> int:
        return len(self.article_ids)


@dataclass
class Match:
    """A ranked index hit. Lower score means more similar."""
    article_id: str
    slug: str
    headline: str
    pub_date: str
    score: float
    resemblance: float | None = None


@dataclass
class Classification:
    """Similarity tier for one candidate."""
    tier: Tier
    score: float | None = None
    match: Match | None = None


@dataclass
class MergeContent:
    """Structured update extracted by arbitration for a MERGE decision."""
    datetime: str
    summary: str
    content: str
    sources: list[Source]
    severity_change: str = "unknown"


@dataclass
class NewStory:
    """Arbitration override: the score was a false positive, publish anyway."""
    reasoning: str


@dataclass
class DuplicateStory:
    """Arbitration confirmed the candidate repeats the matched story."""
    reasoning: str


@dataclass
class MergeStory:
    """Arbitration found new information about the matched story."""
    reasoning: str
    merge: MergeContent


ArbitrationDecision = Union[NewStory, DuplicateStory, MergeStory]


@dataclass
class Decision:
    """Final decision handed to the applier for one candidate.

    Attributes:
        resolution: NEW, DUPLICATE-AUTO, DUPLICATE-CONFIRMED or MERGED
        score: Top similarity score, if any
        matched_article_id: Target article for duplicates and merges
        reasoning: Machine-readable reasoning payload
        method: "automatic" or "llm"
        merge: Update content for merges
    """
    resolution: Resolution
    score: float | None = None
    matched_article_id: str | None = None
    reasoning: dict[str, Any] = field(default_factory=dict)
    method: str = "automatic"
    merge: MergeContent | None = None


@dataclass
class BatchSummary:
    """Counts reported to the operator after a batch."""
    date: str
    processed: int = 0
    new: int = 0
    duplicate_auto: int = 0
    duplicate_confirmed: int = 0
    merged: int = 0
    ambiguous: int = 0
    failed: int = 0
    pending: int = 0
    llm_calls: int = 0
    failed_ids: list[str] = field(default_factory=list)
    pending_ids: list[str] = field(default_factory=list)
    publication_regenerated: bool = False
    dry_run: bool = False

    @property
    def skipped(self) -> int:
        return self.duplicate_auto + self.duplicate_confirmed + self.merged

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "processed": self.processed,
            "new": self.new,
            "duplicate_auto": self.duplicate_auto,
            "duplicate_confirmed": self.duplicate_confirmed,
            "merged": self.merged,
            "ambiguous": self.ambiguous,
            "failed": self.failed,
            "pending": self.pending,
            "llm_calls": self.llm_calls,
            "failed_ids": list(self.failed_ids),
            "pending_ids": list(self.pending_ids),
            "publication_regenerated": self.publication_regenerated,
            "dry_run": self.dry_run,
        }
