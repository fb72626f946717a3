"""Tests for the FTS5 corpus index."""

from __future__ import annotations

import pytest

from daily_resolver.config import ThresholdConfig
from daily_resolver.core.errors import IndexCorruptionError, PreconditionError
from daily_resolver.core.types import Article
from daily_resolver.index.corpus import CorpusIndex, build_query, resemblance
from daily_resolver.store.database import Database
from daily_resolver.store.repository import ArticleStore

from resolver_fixtures import FILLER, TARGET, UNRELATED


def _article(article_id: str, headline: str, summary: str, body: str, pub_date: str = "2025-10-13") -> Article:
    return Article(
        id=article_id,
        slug=article_id,
        headline=headline,
        summary=summary,
        body=body,
        pub_date=pub_date,
    )


def _open(tmp_path, **thresholds) -> tuple[Database, ArticleStore, CorpusIndex]:
    db = Database(tmp_path / "index.db")
    store = ArticleStore(db)
    index = CorpusIndex(db, ThresholdConfig(**thresholds)).open()
    return db, store, index


def _add(db: Database, store: ArticleStore, index: CorpusIndex, article: Article) -> None:
    with db.transaction():
        store.insert_article(article)
        index.index(article)


def _seed(db, store, index) -> None:
    _add(db, store, index, _article(TARGET["id"], TARGET["headline"], TARGET["summary"], TARGET["body"]))
    for idx, (headline, summary, body) in enumerate(FILLER, start=1):
        _add(db, store, index, _article(f"filler-{idx}", headline, summary, body))


def test_build_query_keeps_distinct_words_of_three_or_more_chars():
    query = build_query("Xenon hits Y, xenon AND the NEAR-term: 2FA!")
    assert query == '"xenon" OR "hits" OR "and" OR "the" OR "near" OR "term" OR "2fa"'


def test_build_query_empty_for_short_words():
    assert build_query("a b c -- ?") == ""


def test_empty_index_returns_no_matches(tmp_path):
    db, _, index = _open(tmp_path)
    assert index.score("Ransomware gang Xenon", "2025-10-14") == []
    assert index.verify() == 0
    db.close()


def test_identical_text_scores_most_similar_first(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)

    text = f"{TARGET['headline']} {TARGET['summary']} {TARGET['body']}"
    matches = index.score(text, "2025-10-14")

    assert matches[0].article_id == TARGET["id"]
    assert matches[0].score < -40
    assert all(m.score >= matches[0].score for m in matches)
    db.close()


def test_headline_weight_dominates_body_weight(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    _add(db, store, index, _article("in-headline", "Quokka sighting", "Unrelated summary text", "Nothing here"))
    _add(db, store, index, _article("in-body", "Another story", "Different summary words", "A quokka appeared"))

    matches = index.score("quokka", "2025-10-14")

    assert [m.article_id for m in matches] == ["in-headline", "in-body"]
    db.close()


def test_unrelated_text_does_not_match(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)

    text = f"{UNRELATED['headline']} {UNRELATED['summary']} {UNRELATED['body']}"
    assert index.score(text, "2025-10-14") == []
    db.close()


def test_score_respects_lookback_window_and_exclusions(tmp_path):
    db, store, index = _open(tmp_path, lookback_days=5)
    _seed(db, store, index)
    _add(db, store, index, _article("old", "Quokka archive", "Old quokka story", "quokka", pub_date="2025-09-01"))
    _add(db, store, index, _article("future", "Quokka tomorrow", "Future quokka story", "quokka", pub_date="2025-10-20"))
    _add(db, store, index, _article("recent", "Quokka today", "Recent quokka story", "quokka", pub_date="2025-10-14"))
    _add(db, store, index, _article("self", "Quokka self", "Own quokka story", "quokka", pub_date="2025-10-14"))

    matches = index.score("quokka story", "2025-10-14", exclude_ids=["self"])

    assert [m.article_id for m in matches] == ["recent"]
    db.close()


def test_score_limits_to_top_k(tmp_path):
    db, store, index = _open(tmp_path, top_k=2)
    _seed(db, store, index)
    for idx in range(4):
        _add(db, store, index, _article(f"q{idx}", f"Quokka {idx}", "quokka", "quokka"))

    assert len(index.score("quokka", "2025-10-14")) == 2
    db.close()


def test_operator_words_are_matched_literally(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    # Unquoted, these would be FTS5 operators and a syntax error.
    matches = index.score("NOT AND OR NEAR (", "2025-10-14")

    assert [m.article_id for m in matches] == ["filler-5"]
    db.close()


def test_index_insert_rolls_back_with_article(tmp_path):
    db, store, index = _open(tmp_path)
    article = _article("rolled-back", "Quokka", "quokka", "quokka")
    with pytest.raises(RuntimeError):
        with db.transaction():
            store.insert_article(article)
            index.index(article)
            raise RuntimeError("crash mid-apply")

    assert not store.article_exists("rolled-back")
    assert index.count() == 0
    assert index.verify() == 0
    db.close()


def test_verify_detects_missing_entry_and_blocks_scoring(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    db.execute("DELETE FROM articles_fts WHERE article_id = ?", (TARGET["id"],))

    with pytest.raises(IndexCorruptionError) as excinfo:
        index.verify("2025-10-14")

    assert isinstance(excinfo.value, PreconditionError)
    assert "2025-10-14" in str(excinfo.value)
    assert index.corrupted
    with pytest.raises(IndexCorruptionError):
        index.score("xenon", "2025-10-14")
    db.close()


def test_verify_detects_orphan_entry(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    db.execute(
        "INSERT INTO articles_fts (article_id, headline, summary, body) VALUES ('ghost', 'g', 'g', 'g')"
    )

    with pytest.raises(IndexCorruptionError):
        index.verify()
    db.close()


def test_rebuild_recovers_from_corruption(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    db.execute("DELETE FROM articles_fts WHERE article_id = ?", (TARGET["id"],))
    with pytest.raises(IndexCorruptionError):
        index.verify()

    indexed = index.rebuild()

    assert indexed == len(FILLER) + 1
    assert not index.corrupted
    assert index.verify() == indexed
    assert index.score(TARGET["headline"], "2025-10-14")[0].article_id == TARGET["id"]
    db.close()


def test_near_identical_candidate_against_one_article_index(tmp_path):
    db, store, index = _open(tmp_path)
    _add(
        db,
        store,
        index,
        _article(
            "only",
            "Ransomware group X breaches Company Y",
            "Group X encrypted Company Y file servers overnight.",
            "Investigators are still assessing the damage.",
        ),
    )
    parts = (
        "Ransomware group X breaches Company Y",
        "Group X encrypted Company Y's file servers overnight.",
        "The company has not said whether data was taken.",
    )

    matches = index.score(" ".join(parts), "2025-10-14", parts=parts)

    assert [m.article_id for m in matches] == ["only"]
    assert matches[0].resemblance >= 92
    assert matches[0].score <= ThresholdConfig().low
    db.close()


def test_identical_text_reaches_low_threshold_with_default_weights(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    parts = (TARGET["headline"], TARGET["summary"], TARGET["body"])

    matches = index.score(" ".join(parts), "2025-10-14", parts=parts)

    assert matches[0].article_id == TARGET["id"]
    assert matches[0].resemblance == 100
    assert matches[0].score <= -201
    db.close()


def test_related_story_keeps_its_bm25_score(tmp_path):
    db, store, index = _open(tmp_path)
    _seed(db, store, index)
    parts = (
        "Yellowtail confirms stolen customer records",
        "Logistics firm discloses ransom demand",
        "Yellowtail said the attackers want 40 BTC.",
    )

    matches = index.score(" ".join(parts), "2025-10-14", parts=parts)

    assert matches[0].article_id == TARGET["id"]
    assert matches[0].resemblance < 92
    assert -201 < matches[0].score < 0
    db.close()


def test_resemblance_weights_fields_and_skips_empty_ones():
    assert resemblance(("Same headline", "", ""), ("same headline!", "x", "y"), (10, 5, 1)) == 100
    assert resemblance(("", "", ""), ("a", "b", "c"), (10, 5, 1)) == 0.0
    mixed = resemblance(("Same headline", "Same summary", "abc"), ("Same headline", "Same summary", "xyz"), (10, 5, 1))
    assert mixed == pytest.approx(1500 / 16)
