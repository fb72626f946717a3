"""
Core domain models and business logic.

Data types, the error taxonomy and slug helpers live here alongside the
classifier, applier and publication regenerator. Only the dependency-free
modules are re-exported; import the services from their own modules.
"""

from .errors import (
    ApplicationError,
    ArbitrationError,
    ConsistencyError,
    IndexCorruptionError,
    PreconditionError,
    ResolverError,
)
from .slugs import short_hash, slugify, unique_slug
from .types import Article, ArticleUpdate, Candidate, Publication, Resolution, Source

__all__ = [
    "ResolverError",
    "PreconditionError",
    "IndexCorruptionError",
    "ArbitrationError",
    "ApplicationError",
    "ConsistencyError",
    "Article",
    "ArticleUpdate",
    "Candidate",
    "Publication",
    "Resolution",
    "Source",
    "slugify",
    "short_hash",
    "unique_slug",
]
