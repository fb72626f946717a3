"""
Daily Resolver - duplicate resolution engine for daily news batches.

This package decides, for each structured candidate article in a daily
batch, whether it is a new story, a duplicate of a published story, or new
information to merge into one, and commits that decision without changing
the identity of published articles.

Main entry point is the CLI via the `daily-resolver` command.

Example:
    $ daily-resolver ingest -i batch-2025-10-14.json
    $ daily-resolver resolve -d 2025-10-14
"""

__all__ = ["__version__", "Resolution", "ResolverError", "slugify"]
__version__ = "0.1.0"

from .core.errors import ResolverError
from .core.slugs import slugify
from .core.types import Resolution
