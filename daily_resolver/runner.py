"""
Batch orchestration for the resolution engine.

One date's batch moves through four stages, candidate by candidate, in batch
order so that an intra-batch duplicate is caught against siblings applied
moments earlier:

1. classify   - score against the corpus index and pick a tier
2. arbitrate  - only for the ambiguous tier, ask the model
3. apply      - commit the decision in one transaction
4. regenerate - rebuild the date's publication from its NEW articles

Precondition failures abort before anything is written. Arbitration and
application failures are isolated to their candidate; the rest of the
batch proceeds and the summary lists what needs a re-run.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)

from .config import AppConfig, get_api_key
from .core.applier import ResolutionApplier
from .core.classifier import SimilarityClassifier
from .core.errors import (
    ApplicationError,
    ArbitrationError,
    PreconditionError,
)
from .core.publication import PublicationRegenerator
from .core.types import (
    BatchSummary,
    Candidate,
    Classification,
    Decision,
    DuplicateStory,
    MergeStory,
    NewStory,
    Resolution,
    Tier,
)
from .index.corpus import CorpusIndex
from .input.batch_parser import Batch
from .llm.arbitration import Arbitrator
from .llm.providers.factory import create_provider
from .llm.tracing import set_span_output, setup_langfuse, start_span
from .store.database import Database
from .store.repository import ArticleStore
from .utils.logging import log_directory, log_event, setup_llm_logger, setup_logging

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """The wired-up services for one database."""

    db: Database
    store: ArticleStore
    index: CorpusIndex
    classifier: SimilarityClassifier
    applier: ResolutionApplier
    regenerator: PublicationRegenerator
    arbitrator: Arbitrator | None = None

    def close(self) -> None:
        self.index.close()
        self.db.close()


def build_pipeline(
    cfg: AppConfig,
    config_path: str | None = None,
    arbitrator: Arbitrator | None = None,
    with_provider: bool = True,
) -> Pipeline:
    """Open the store and index and wire every stage from configuration.

    A missing API key is not fatal here: without an arbitrator, ambiguous
    candidates fail individually and are reported for a re-run.
    """
    log_dir = log_directory(cfg.logging)
    setup_logging(cfg.logging, log_dir)
    setup_langfuse(cfg.langfuse)

    db = Database(cfg.storage.db_path, cfg.storage.busy_timeout_ms)
    store = ArticleStore(db)
    index = CorpusIndex(db, cfg.thresholds).open()

    provider = None
    if arbitrator is None and with_provider:
        llm_logger = setup_llm_logger(cfg.logging, log_dir)
        provider = _build_provider(cfg, llm_logger)
        if provider is not None:
            arbitrator = Arbitrator(provider, cfg.arbitration)
    elif arbitrator is not None:
        provider = arbitrator.provider

    return Pipeline(
        db=db,
        store=store,
        index=index,
        classifier=SimilarityClassifier(cfg.thresholds, config_path, index=index),
        applier=ResolutionApplier(db, store, index, cfg.sources),
        regenerator=PublicationRegenerator(
            db,
            store,
            cfg.publication,
            writer=provider if cfg.publication.use_llm else None,
            arbitration_cfg=cfg.arbitration,
        ),
        arbitrator=arbitrator,
    )


def ingest_batch(pipeline: Pipeline, batch: Batch) -> int:
    """Store a parsed batch as pending candidates.

    Raises:
        PreconditionError: the date still has unresolved candidates, or a
            candidate id was already ingested
    """
    store = pipeline.store
    unresolved = store.count_unresolved(batch.date)
    if unresolved:
        raise PreconditionError(
            batch.date,
            f"{unresolved} candidate(s) from a previous ingest are still unresolved; "
            "run resolve first",
        )
    for candidate in batch.candidates:
        if store.candidate_exists(candidate.id):
            raise PreconditionError(batch.date, f"candidate {candidate.id} was already ingested")

    run_id = _start_run(store, "ingest", batch.date, {"candidates": len(batch.candidates)})
    with pipeline.db.transaction():
        count = store.insert_candidates(batch.candidates)
    _finish_run(store, run_id, "SUCCESS", {"ingested": count})
    log_event(logger, "Batch ingested", event="batch_ingested", date=batch.date, candidates=count)
    return count


def resolve_batch(
    pipeline: Pipeline,
    date: str,
    dry_run: bool = False,
    show_progress: bool = False,
    console: Console | None = None,
) -> BatchSummary:
    """Resolve every pending or previously failed candidate for date.

    Args:
        pipeline: Wired services
        date: Batch date (YYYY-MM-DD)
        dry_run: Classify only; nothing is arbitrated or written
        show_progress: Display a Rich progress bar
        console: Console for the progress bar

    Returns:
        Counts per outcome plus ids that need a re-run

    Raises:
        PreconditionError: no candidates for the date, a corrupted index, or
            thresholds that no longer validate after a reload
    """
    store = pipeline.store
    if store.count_candidates(date) == 0:
        raise PreconditionError(date, "no candidates have been ingested for this date")
    pipeline.index.verify(date)
    if pipeline.classifier.config_path:
        try:
            pipeline.classifier.reload()
        except ValueError as exc:
            raise PreconditionError(date, f"invalid thresholds: {exc}") from exc

    candidates = store.unresolved_candidates(date)
    summary = BatchSummary(date=date, dry_run=dry_run)
    calls_before = pipeline.arbitrator.calls if pipeline.arbitrator else 0
    run_id = None if dry_run else _start_run(store, "resolve", date, {"candidates": len(candidates)})

    with start_span(
        "daily_resolver.resolve",
        kind="chain",
        input_value={"date": date, "candidates": len(candidates)},
        attributes={"dry_run": dry_run},
    ) as run_span:
        log_event(
            logger,
            "Resolve start",
            event="resolve_start",
            date=date,
            candidates=len(candidates),
            dry_run=dry_run,
        )
        try:
            if show_progress:
                progress = Progress(
                    SpinnerColumn(),
                    TextColumn("{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    console=console or Console(),
                )
                with progress:
                    task = progress.add_task(f"Resolve {date}", total=len(candidates))
                    for candidate in candidates:
                        _process_candidate(pipeline, candidate, summary)
                        progress.advance(task, 1)
            else:
                for candidate in candidates:
                    _process_candidate(pipeline, candidate, summary)

            if pipeline.arbitrator is not None:
                summary.llm_calls = pipeline.arbitrator.calls - calls_before
            if not dry_run and _needs_regeneration(store, date, summary):
                _, summary.publication_regenerated = pipeline.regenerator.regenerate(date)
        except Exception as exc:
            if run_id is not None:
                _finish_run(store, run_id, "FAILED", summary.to_dict(), error=str(exc))
            raise

        if run_id is not None:
            _finish_run(store, run_id, "SUCCESS", summary.to_dict())
        log_event(logger, "Resolve complete", event="resolve_complete", **summary.to_dict())
        set_span_output(run_span, summary.to_dict())
    return summary


def classify_candidate(pipeline: Pipeline, candidate: Candidate) -> Classification:
    """Stage 1: score the candidate against everything indexed so far."""
    matches = pipeline.index.score(
        candidate.text,
        candidate.pub_date,
        exclude_ids=[candidate.id],
        parts=(candidate.headline, candidate.summary, candidate.body),
    )
    return pipeline.classifier.classify(candidate.id, matches)


def decide(pipeline: Pipeline, candidate: Candidate, classification: Classification) -> Decision:
    """Stage 2: turn a tier into a final decision, arbitrating when ambiguous.

    Raises:
        ArbitrationError: the ambiguous tier could not be settled
    """
    reasoning: dict[str, Any] = {
        "tier": classification.tier.value,
        "score": classification.score,
        "thresholds": {
            "high": pipeline.classifier.thresholds.high,
            "low": pipeline.classifier.thresholds.low,
        },
    }
    match = classification.match
    if match is not None:
        reasoning["top_match"] = {
            "article_id": match.article_id,
            "slug": match.slug,
            "headline": match.headline,
        }

    if classification.tier is Tier.NEW:
        return Decision(Resolution.NEW, classification.score, None, reasoning)
    if classification.tier is Tier.DUPLICATE:
        return Decision(Resolution.DUPLICATE_AUTO, classification.score, match.article_id, reasoning)

    if pipeline.arbitrator is None:
        raise ArbitrationError("no arbitration provider is configured")
    existing = pipeline.store.get_article(match.article_id)
    verdict = pipeline.arbitrator.arbitrate(candidate, existing)
    reasoning["arbitration"] = {"decision": type(verdict).__name__, "reasoning": verdict.reasoning}

    if isinstance(verdict, NewStory):
        return Decision(Resolution.NEW, classification.score, None, reasoning, method="llm")
    if isinstance(verdict, DuplicateStory):
        return Decision(
            Resolution.DUPLICATE_CONFIRMED,
            classification.score,
            existing.id,
            reasoning,
            method="llm",
        )
    if isinstance(verdict, MergeStory):
        return Decision(
            Resolution.MERGED,
            classification.score,
            existing.id,
            reasoning,
            method="llm",
            merge=verdict.merge,
        )
    raise ArbitrationError(f"Unexpected arbitration result {verdict!r}")


def _process_candidate(pipeline: Pipeline, candidate: Candidate, summary: BatchSummary) -> None:
    store = pipeline.store
    summary.processed += 1
    classification = classify_candidate(pipeline, candidate)

    if summary.dry_run:
        _count_dry_run(summary, classification)
        return

    try:
        decision = decide(pipeline, candidate, classification)
    except ArbitrationError as exc:
        match = classification.match
        with pipeline.db.transaction():
            store.mark_failed(
                candidate.id,
                str(exc),
                score=classification.score,
                matched_article_id=match.article_id if match else None,
            )
        summary.failed += 1
        summary.failed_ids.append(candidate.id)
        log_event(
            logger,
            "Arbitration failed",
            event="arbitration_failed",
            candidate_id=candidate.id,
            error=str(exc),
        )
        return

    try:
        pipeline.applier.apply(candidate, decision)
    except ApplicationError as exc:
        with pipeline.db.transaction():
            store.note_pending_error(candidate.id, str(exc))
        summary.pending += 1
        summary.pending_ids.append(candidate.id)
        logger.error("Could not apply %s: %s", candidate.id, exc)
        return

    _count_outcome(summary, decision.resolution)


def _count_outcome(summary: BatchSummary, resolution: Resolution) -> None:
    if resolution is Resolution.NEW:
        summary.new += 1
    elif resolution is Resolution.DUPLICATE_AUTO:
        summary.duplicate_auto += 1
    elif resolution is Resolution.DUPLICATE_CONFIRMED:
        summary.duplicate_confirmed += 1
    elif resolution is Resolution.MERGED:
        summary.merged += 1


def _count_dry_run(summary: BatchSummary, classification: Classification) -> None:
    if classification.tier is Tier.NEW:
        summary.new += 1
    elif classification.tier is Tier.DUPLICATE:
        summary.duplicate_auto += 1
    else:
        summary.ambiguous += 1


def _needs_regeneration(store: ArticleStore, date: str, summary: BatchSummary) -> bool:
    if summary.skipped or summary.new:
        return True
    return store.get_publication(date) is None


def _build_provider(cfg: AppConfig, llm_logger):
    """Build the configured LLM provider, or None when no API key is available."""
    if not get_api_key(cfg.provider):
        logger.warning(
            "Arbitration disabled: no API key in provider.api_key or $%s", cfg.provider.api_key_env
        )
        return None
    return create_provider(cfg.provider, cfg.arbitration, cfg.logging, llm_logger)


def _start_run(store: ArticleStore, command: str, date: str, metadata: dict[str, Any]) -> int:
    with store.db.transaction():
        return store.start_run(command, date, metadata)


def _finish_run(
    store: ArticleStore,
    run_id: int,
    status: str,
    counts: dict[str, Any],
    error: str | None = None,
) -> None:
    with store.db.transaction():
        store.finish_run(run_id, status, counts, error)
