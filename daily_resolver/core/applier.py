"""
Commit one candidate's resolution atomically.

Each call to `ResolutionApplier.apply()` runs in a single `BEGIN IMMEDIATE`
transaction covering the article row, its sources, its index entry and the
candidate's resolution record. Any failure rolls all of it back.

Outcomes:
- NEW: create the article (permanent id and slug) and index it
- DUPLICATE-AUTO / DUPLICATE-CONFIRMED: record only; auto duplicates also
  lend their sources to the canonical article
- MERGED: append an update to the canonical article, passing through
  MERGE-PENDING inside the same transaction
"""

from __future__ import annotations

import logging
import sqlite3

from ..config import SourcesConfig
from ..index.corpus import CorpusIndex
from ..store.database import Database
from ..store.repository import ArticleStore
from ..utils.logging import log_event
from .errors import ApplicationError, ConsistencyError
from .slugs import unique_slug
from .types import (
    Article,
    ArticleUpdate,
    Candidate,
    CandidateStatus,
    Decision,
    Resolution,
    ResolutionRecord,
)

logger = logging.getLogger(__name__)


class ResolutionApplier:
    def __init__(
        self,
        db: Database,
        store: ArticleStore,
        index: CorpusIndex,
        sources_cfg: SourcesConfig | None = None,
    ):
        self.db = db
        self.store = store
        self.index = index
        self.sources_cfg = sources_cfg or SourcesConfig()

    def apply(self, candidate: Candidate, decision: Decision) -> ResolutionRecord:
        """Persist the decision for an ingested candidate.

        Re-applying the outcome already committed for the candidate is a
        no-op. A different outcome raises ConsistencyError.

        Raises:
            ConsistencyError: conflicting re-resolution, unknown target, or
                an article with this id already exists
            ApplicationError: the store failed; nothing was written
        """
        if decision.resolution is Resolution.MERGE_PENDING:
            raise ValueError("MERGE-PENDING is transitional; apply MERGED with merge content")

        try:
            with self.db.transaction():
                record = self.store.get_record(candidate.id)
                if record is None:
                    raise ConsistencyError(f"Candidate {candidate.id} was never ingested")
                if record.status is CandidateStatus.RESOLVED:
                    self._check_same_outcome(record, decision)
                    logger.debug("Candidate %s already resolved; nothing to do", candidate.id)
                    return record

                if decision.resolution is Resolution.NEW:
                    self._apply_new(candidate, decision)
                elif decision.resolution is Resolution.MERGED:
                    self._apply_merge(candidate, decision)
                else:
                    self._apply_duplicate(candidate, decision)
        except sqlite3.Error as exc:
            raise ApplicationError(candidate.id, f"{type(exc).__name__}: {exc}") from exc

        result = self.store.get_record(candidate.id)
        log_event(
            logger,
            "Resolution applied",
            candidate_id=candidate.id,
            resolution=decision.resolution.value,
            matched_article_id=decision.matched_article_id,
            score=decision.score,
            method=decision.method,
        )
        return result

    def _apply_new(self, candidate: Candidate, decision: Decision) -> None:
        if self.store.article_exists(candidate.id):
            raise ConsistencyError(f"Article {candidate.id} already exists")
        slug = unique_slug(candidate.headline, candidate.id, self.store.slug_taken)
        article = Article(
            id=candidate.id,
            slug=slug,
            headline=candidate.headline,
            summary=candidate.summary,
            body=candidate.body,
            pub_date=candidate.pub_date,
            ordinal=candidate.ordinal,
            severity=candidate.severity,
            tags=list(candidate.tags),
            entities=list(candidate.entities),
            sources=list(candidate.sources),
        )
        self.store.insert_article(article)
        self.index.index(article)
        self.store.write_resolution(
            candidate.id,
            Resolution.NEW,
            decision.score,
            None,
            decision.reasoning,
            decision.method,
        )

    def _apply_duplicate(self, candidate: Candidate, decision: Decision) -> None:
        target = self._require_target(candidate, decision)
        if decision.resolution is Resolution.DUPLICATE_AUTO and self.sources_cfg.merge_duplicate_sources:
            self.store.merge_sources(
                target,
                candidate.sources,
                threshold=self.sources_cfg.title_similarity_threshold,
            )
        self.store.write_resolution(
            candidate.id,
            decision.resolution,
            decision.score,
            target,
            decision.reasoning,
            decision.method,
        )

    def _apply_merge(self, candidate: Candidate, decision: Decision) -> None:
        target = self._require_target(candidate, decision)
        merge = decision.merge
        if merge is None:
            raise ValueError(f"MERGED decision for {candidate.id} carries no update content")
        self.store.write_resolution(
            candidate.id,
            Resolution.MERGE_PENDING,
            decision.score,
            target,
            decision.reasoning,
            decision.method,
        )
        self.store.add_update(
            ArticleUpdate(
                article_id=target,
                source_candidate_id=candidate.id,
                datetime=merge.datetime,
                summary=merge.summary,
                content=merge.content,
                severity_change=merge.severity_change,
                sources=list(merge.sources),
            )
        )
        self.store.complete_merge(candidate.id)

    def _require_target(self, candidate: Candidate, decision: Decision) -> str:
        target = decision.matched_article_id
        if not target:
            raise ConsistencyError(
                f"{decision.resolution.value} for {candidate.id} needs a matched article"
            )
        if target == candidate.id:
            raise ConsistencyError(f"Candidate {candidate.id} cannot point at itself")
        if not self.store.article_exists(target):
            raise ConsistencyError(
                f"{decision.resolution.value} for {candidate.id} targets unknown article {target}"
            )
        return target

    @staticmethod
    def _check_same_outcome(record: ResolutionRecord, decision: Decision) -> None:
        same_target = decision.resolution is Resolution.NEW or (
            record.matched_article_id == decision.matched_article_id
        )
        if record.resolution is decision.resolution and same_target:
            return
        was = record.resolution.value if record.resolution else "unresolved"
        raise ConsistencyError(
            f"Candidate {record.candidate_id} already resolved {was} -> "
            f"{record.matched_article_id}; refusing {decision.resolution.value} -> "
            f"{decision.matched_article_id}"
        )
