"""Slug helpers for permanent article identities.

A slug is derived once from the headline when an article is accepted as NEW.
On collision with an existing slug, a short hash of the article id is appended
so two stories never share a URL.
"""

from __future__ import annotations

import hashlib
import re


def slugify(text: str, max_length: int = 80) -> str:
    """Convert text to URL-safe slug.

    Args:
        text: The text to slugify
        max_length: Maximum slug length

    Returns:
        A lowercase, hyphenated slug
    """
    slug = text.lower()
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = slug.strip("-")
    # Fallback for empty slug (e.g., empty title or only special characters)
    if not slug:
        slug = "untitled"
    return slug[:max_length].rstrip("-")


def short_hash(value: str) -> str:
    """Return first 5 characters of MD5 hash of value.

    Args:
        value: The value to hash (an article id)

    Returns:
        First 5 characters of the MD5 hash (hexadecimal)
    """
    return hashlib.md5(value.encode()).hexdigest()[:5]


def unique_slug(headline: str, article_id: str, taken) -> str:
    """Slug for a new article that does not collide with existing ones.

    Args:
        headline: Article headline
        article_id: Permanent article id, used to disambiguate
        taken: Callable returning True if a slug is already in use

    Returns:
        The plain slug if free, otherwise the slug with a short id hash
    """
    base = slugify(headline)
    if not taken(base):
        return base
    candidate = f"{base}-{short_hash(article_id)}"
    if not taken(candidate):
        return candidate
    # Only reachable when two ids hash to the same prefix.
    return f"{base}-{hashlib.md5(article_id.encode()).hexdigest()}"
