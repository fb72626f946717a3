"""
Similarity tiers from the top BM25 score.

    score >= high          -> new        (publish without asking anyone)
    low < score < high     -> ambiguous  (arbitration decides)
    score <= low           -> duplicate  (skip automatically)

Scores are negative; the more negative, the closer the match.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from ..config import ThresholdConfig, load_thresholds
from ..utils.logging import log_event
from .types import Classification, Match, Tier

if TYPE_CHECKING:
    from ..index.corpus import CorpusIndex

logger = logging.getLogger(__name__)


def classify(matches: Sequence[Match], thresholds: ThresholdConfig) -> Classification:
    """Map ranked matches to a tier. Pure: no I/O, no logging."""
    if not matches:
        return Classification(tier=Tier.NEW)
    top = min(matches, key=lambda m: m.score)
    if top.score >= thresholds.high:
        tier = Tier.NEW
    elif top.score <= thresholds.low:
        tier = Tier.DUPLICATE
    else:
        tier = Tier.AMBIGUOUS
    return Classification(tier=tier, score=top.score, match=top)


class SimilarityClassifier:
    """Classifier with reloadable thresholds and per-decision logging.

    When an index is attached, a reload hands it the same thresholds, so
    weights, lookback_days, top_k and near_identical stay in step with the
    tier boundaries.
    """

    def __init__(
        self,
        thresholds: ThresholdConfig,
        config_path: str | None = None,
        index: CorpusIndex | None = None,
    ):
        thresholds.validate()
        self.thresholds = thresholds
        self.config_path = config_path
        self.index = index

    def reload(self, thresholds: ThresholdConfig | None = None) -> ThresholdConfig:
        """Swap thresholds, either given directly or re-read from the config file."""
        if thresholds is None:
            thresholds = load_thresholds(self.config_path)
        thresholds.validate()
        self.thresholds = thresholds
        if self.index is not None:
            self.index.set_thresholds(thresholds)
        logger.info("Thresholds reloaded: high=%s low=%s", thresholds.high, thresholds.low)
        return thresholds

    def classify(self, candidate_id: str, matches: Sequence[Match]) -> Classification:
        result = classify(matches, self.thresholds)
        log_event(
            logger,
            "Candidate classified",
            candidate_id=candidate_id,
            tier=result.tier.value,
            score=result.score,
            matched_article_id=result.match.article_id if result.match else None,
            resemblance=result.match.resemblance if result.match else None,
            high=self.thresholds.high,
            low=self.thresholds.low,
        )
        return result
