"""Prompt builders for arbitration and publication writing."""

from __future__ import annotations

from typing import Sequence

from ..config import ArbitrationConfig, PublicationConfig
from ..core.types import Article, Candidate


_ARBITRATION_TEMPLATE = """\
You are deciding whether a newly structured news article should be published,
skipped as a duplicate, or merged into an existing article as an update.

EXISTING ARTICLE ({existing_date}):
Headline: {existing_headline}
Summary: {existing_summary}
Full Report: {existing_body}

NEW ARTICLE ({new_date}):
Headline: {new_headline}
Summary: {new_summary}
Full Report: {new_body}
{new_sources}

DECISION CRITERIA:

NEW - publish as a separate article if it reports:
- a different incident, vulnerability, campaign or threat actor
- a different affected organization or product
- substantially different technical details

SKIP - duplicate of the existing article if it reports:
- the same event in different wording, or from another outlet
- nothing beyond what the existing article already says

UPDATE - merge into the existing article if it reports new developments of
the same event: new technical details, additional victims, patches or
mitigations, attribution or expert analysis.

For UPDATE you MUST return the complete update object:
- datetime: ISO 8601 time the new information appeared
- summary: one sentence on what is new
- content: standalone description of the new information
- sources: 1-3 objects {{"url", "title"}} taken from the NEW article's sources
- severity_change: "increased", "decreased", "unchanged" or "unknown"

Return JSON with keys: decision ("NEW", "SKIP" or "UPDATE"), reasoning, update."""


_PUBLICATION_TEMPLATE = """\
Write the headline and summary for the {title} of {date}.
The briefing covers exactly these stories, most severe first:

{stories}

Return JSON with keys: headline (under 120 characters) and summary
(2-4 sentences naming the most important stories). Do not invent stories."""


def build_arbitration_prompt(
    candidate: Candidate,
    existing: Article,
    cfg: ArbitrationConfig,
) -> str:
    sources = candidate.sources[: cfg.max_sources]
    if sources:
        lines = [f"  {idx}. {s.title or '(untitled)'}\n     {s.url}" for idx, s in enumerate(sources, 1)]
        sources_block = "Sources:\n" + "\n".join(lines)
    else:
        sources_block = "Sources: none available"

    return _ARBITRATION_TEMPLATE.format(
        existing_date=existing.pub_date,
        existing_headline=existing.headline,
        existing_summary=existing.summary,
        existing_body=existing.body[: cfg.max_chars],
        new_date=candidate.pub_date,
        new_headline=candidate.headline,
        new_summary=candidate.summary,
        new_body=candidate.body[: cfg.max_chars],
        new_sources=sources_block,
    )


def build_publication_prompt(
    date: str,
    articles: Sequence[Article],
    cfg: PublicationConfig,
) -> str:
    stories = "\n".join(
        f"- [{article.severity or 'unrated'}] {article.headline}: {article.summary}"
        for article in articles
    )
    return _PUBLICATION_TEMPLATE.format(title=cfg.title, date=date, stories=stories or "- (none)")
