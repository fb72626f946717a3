"""Tests for similarity tiering."""

from __future__ import annotations

import pytest

from daily_resolver.config import ThresholdConfig
from daily_resolver.core.classifier import SimilarityClassifier, classify
from daily_resolver.core.types import Match, Tier

THRESHOLDS = ThresholdConfig(high=-80.0, low=-201.0)


def _match(score: float, article_id: str = "a1") -> Match:
    return Match(article_id=article_id, slug=article_id, headline="h", pub_date="2025-10-14", score=score)


def test_no_matches_is_new():
    result = classify([], THRESHOLDS)
    assert result.tier is Tier.NEW
    assert result.score is None
    assert result.match is None


@pytest.mark.parametrize(
    "score,tier",
    [
        (-5.0, Tier.NEW),
        (-80.0, Tier.NEW),
        (-80.1, Tier.AMBIGUOUS),
        (-200.9, Tier.AMBIGUOUS),
        (-201.0, Tier.DUPLICATE),
        (-450.0, Tier.DUPLICATE),
    ],
)
def test_threshold_boundaries(score, tier):
    assert classify([_match(score)], THRESHOLDS).tier is tier


def test_uses_most_similar_match_regardless_of_order():
    result = classify([_match(-10.0, "far"), _match(-250.0, "close")], THRESHOLDS)
    assert result.tier is Tier.DUPLICATE
    assert result.match.article_id == "close"
    assert result.score == -250.0


def test_reload_swaps_thresholds():
    classifier = SimilarityClassifier(ThresholdConfig())
    assert classifier.classify("c1", [_match(-100.0)]).tier is Tier.AMBIGUOUS

    classifier.reload(ThresholdConfig(high=-120.0, low=-300.0))

    assert classifier.classify("c1", [_match(-100.0)]).tier is Tier.NEW


def test_reload_from_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("thresholds:\n  high: -20\n  low: -90\n", encoding="utf-8")
    classifier = SimilarityClassifier(ThresholdConfig(), config_path=str(path))

    thresholds = classifier.reload()

    assert thresholds.low == -90
    assert classifier.classify("c1", [_match(-95.0)]).tier is Tier.DUPLICATE


def test_reload_rejects_invalid_thresholds():
    classifier = SimilarityClassifier(ThresholdConfig())
    with pytest.raises(ValueError):
        classifier.reload(ThresholdConfig(high=-100.0, low=-50.0))
    assert classifier.thresholds.high == -80.0


def test_reload_hands_thresholds_to_attached_index():
    class RecordingIndex:
        thresholds = None

        def set_thresholds(self, thresholds):
            self.thresholds = thresholds

    index = RecordingIndex()
    classifier = SimilarityClassifier(ThresholdConfig(), index=index)
    recalibrated = ThresholdConfig(high=-50.0, low=-150.0, top_k=3, lookback_days=7)

    classifier.reload(recalibrated)

    assert index.thresholds is recalibrated
    assert classifier.thresholds is recalibrated
