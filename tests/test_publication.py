"""Tests for publication composition and regeneration."""

from __future__ import annotations

from daily_resolver.config import ArbitrationConfig, PublicationConfig
from daily_resolver.core.publication import (
    PublicationRegenerator,
    compose,
    fingerprint,
    rank_by_severity,
)
from daily_resolver.core.types import Article
from daily_resolver.store.database import Database
from daily_resolver.store.repository import ArticleStore

from resolver_fixtures import ScriptedProvider

DATE = "2025-10-14"


def _article(article_id: str, headline: str, severity: str | None, ordinal: int, date: str = DATE) -> Article:
    return Article(
        id=article_id,
        slug=article_id,
        headline=headline,
        summary=f"{headline} summary",
        body="body",
        pub_date=date,
        ordinal=ordinal,
        severity=severity,
    )


def _store(tmp_path) -> tuple[Database, ArticleStore]:
    db = Database(tmp_path / "pub.db")
    return db, ArticleStore(db)


def _insert(db: Database, store: ArticleStore, *articles: Article) -> None:
    with db.transaction():
        for article in articles:
            store.insert_article(article)


def _regenerator(db, store, writer=None, use_llm=False) -> PublicationRegenerator:
    return PublicationRegenerator(
        db,
        store,
        PublicationConfig(use_llm=use_llm),
        writer=writer,
        arbitration_cfg=ArbitrationConfig(retries=2, backoff_seconds=0.5),
        sleep=lambda seconds: None,
    )


def test_rank_by_severity_then_batch_order():
    articles = [
        _article("a", "A", "high", 0),
        _article("b", "B", "critical", 1),
        _article("c", "C", None, 2),
        _article("d", "D", "HIGH", 3),
    ]
    assert [a.id for a in rank_by_severity(articles)] == ["b", "a", "d", "c"]


def test_compose_leads_with_most_severe():
    articles = [
        _article("a", "Patch released", "high", 0),
        _article("b", "Xenon breaches Yellowtail", "critical", 1),
        _article("c", "Conference recap", None, 2),
    ]

    headline, summary = compose(DATE, articles, PublicationConfig(title="Brief"))

    assert headline == "Brief 2025-10-14: Xenon breaches Yellowtail and 2 more"
    assert summary == (
        "3 new stories. Xenon breaches Yellowtail (critical); Patch released (high); Conference recap."
    )


def test_compose_single_and_empty():
    headline, summary = compose(DATE, [_article("a", "Lone story", None, 0)], PublicationConfig(title="Brief"))
    assert headline == "Brief 2025-10-14: Lone story"
    assert summary == "1 new story. Lone story."

    headline, _ = compose(DATE, [], PublicationConfig(title="Brief"))
    assert headline == "Brief 2025-10-14: no new stories"


def test_compose_caps_named_items():
    articles = [_article(str(i), f"Story {i}", None, i) for i in range(4)]
    _, summary = compose(DATE, articles, PublicationConfig(max_summary_items=2))
    assert summary == "4 new stories. Story 0; Story 1."


def test_fingerprint_tracks_content_and_order():
    a = _article("a", "A", "high", 0)
    b = _article("b", "B", None, 1)
    assert fingerprint([a, b]) == fingerprint([a, b])
    assert fingerprint([a, b]) != fingerprint([b, a])
    changed = _article("a", "A", "critical", 0)
    assert fingerprint([changed, b]) != fingerprint([a, b])


def test_regenerate_is_idempotent(tmp_path):
    db, store = _store(tmp_path)
    _insert(db, store, _article("a", "A", "high", 0), _article("b", "B", "critical", 1))
    _insert(db, store, _article("other-day", "Other", None, 0, date="2025-10-13"))
    regenerator = _regenerator(db, store)

    first, changed = regenerator.regenerate(DATE)
    assert changed
    assert first.id == "pub-2025-10-14"
    assert first.slug == "daily-threat-briefing-2025-10-14"
    assert first.article_ids == ["a", "b"]

    second, changed_again = regenerator.regenerate(DATE)
    assert not changed_again
    assert second.fingerprint == first.fingerprint
    assert second.updated_at == first.updated_at


def test_regenerate_picks_up_new_articles(tmp_path):
    db, store = _store(tmp_path)
    _insert(db, store, _article("a", "A", "high", 0))
    regenerator = _regenerator(db, store)
    regenerator.regenerate(DATE)

    _insert(db, store, _article("b", "B", "critical", 1))
    publication, changed = regenerator.regenerate(DATE)

    assert changed
    assert publication.article_ids == ["a", "b"]
    assert publication.headline.endswith(": B and 1 more")
    assert publication.created_at is not None


def test_regenerate_empty_date(tmp_path):
    db, store = _store(tmp_path)
    writer = ScriptedProvider(publication_reply={"headline": "LLM", "summary": "S"})

    publication, changed = _regenerator(db, store, writer, use_llm=True).regenerate(DATE)

    assert changed
    assert publication.article_ids == []
    assert publication.headline.endswith("no new stories")
    assert writer.publication_calls == 0


def test_llm_writer_runs_only_when_articles_change(tmp_path):
    db, store = _store(tmp_path)
    _insert(db, store, _article("a", "A", "high", 0))
    writer = ScriptedProvider(publication_reply={"headline": " Xenon dominates the day ", "summary": "Two sentences."})
    regenerator = _regenerator(db, store, writer, use_llm=True)

    publication, _ = regenerator.regenerate(DATE)
    regenerator.regenerate(DATE)

    assert publication.headline == "Xenon dominates the day"
    assert publication.summary == "Two sentences."
    assert writer.publication_calls == 1


def test_llm_writer_ignored_unless_enabled(tmp_path):
    db, store = _store(tmp_path)
    _insert(db, store, _article("a", "A", "high", 0))
    writer = ScriptedProvider(publication_reply={"headline": "LLM", "summary": "S"})

    publication, _ = _regenerator(db, store, writer, use_llm=False).regenerate(DATE)

    assert writer.publication_calls == 0
    assert publication.headline == "Daily Threat Briefing 2025-10-14: A"


def test_llm_writer_failure_falls_back_to_compose(tmp_path):
    db, store = _store(tmp_path)
    _insert(db, store, _article("a", "A", "high", 0))
    writer = ScriptedProvider(publication_reply=None)

    publication, changed = _regenerator(db, store, writer, use_llm=True).regenerate(DATE)

    assert changed
    assert writer.publication_calls == 3
    assert publication.headline == "Daily Threat Briefing 2025-10-14: A"


def test_llm_writer_without_headline_falls_back(tmp_path):
    db, store = _store(tmp_path)
    _insert(db, store, _article("a", "A", "high", 0))
    writer = ScriptedProvider(publication_reply={"summary": "no headline"})

    publication, _ = _regenerator(db, store, writer, use_llm=True).regenerate(DATE)

    assert publication.summary == "1 new story. A (high)."
