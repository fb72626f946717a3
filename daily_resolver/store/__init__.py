"""Relational persistence for articles, candidates and publications."""

from .database import Database, utc_now
from .repository import ArticleStore

__all__ = ["Database", "ArticleStore", "utc_now"]
