"""Abstract interface for the language model behind arbitration."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from ...config import PublicationConfig
from ...core.types import Article, Candidate


class ArbitrationProvider(ABC):
    """Provider interface returning raw model text.

    Transport failures propagate as httpx errors so the caller can decide
    whether to retry; nothing here validates the reply.
    """

    name = "base"

    @abstractmethod
    def arbitrate(self, candidate: Candidate, existing: Article) -> str:
        """Return the raw JSON reply for a NEW/SKIP/UPDATE decision."""
        raise NotImplementedError

    @abstractmethod
    def write_publication(
        self,
        date: str,
        articles: Sequence[Article],
        cfg: PublicationConfig,
    ) -> str:
        """Return the raw JSON reply with a publication headline and summary."""
        raise NotImplementedError
