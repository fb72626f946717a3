"""Full-text corpus index."""

from .corpus import CorpusIndex, build_query

__all__ = ["CorpusIndex", "build_query"]
