"""
Exception taxonomy for the resolution engine.

- PreconditionError: the batch cannot start (missing/invalid batch, corrupt index).
  Raised before any mutation.
- ArbitrationError: one candidate's model call failed or returned a malformed reply.
- ApplicationError: committing one candidate's resolution failed and was rolled back.
- ConsistencyError: a caller broke an identity contract.
"""

from __future__ import annotations


class ResolverError(Exception):
    """Base class for all resolver errors."""


class PreconditionError(ResolverError):
    """A batch-level precondition failed; nothing was mutated."""

    def __init__(self, date: str | None, condition: str):
        self.date = date
        self.condition = condition
        where = f"batch {date}" if date else "batch"
        super().__init__(f"{where}: {condition}")


class IndexCorruptionError(PreconditionError):
    """The corpus index failed verification and must be rebuilt."""

    def __init__(self, condition: str, date: str | None = None):
        super().__init__(date, f"corpus index corrupted ({condition}); run rebuild-index")


class ArbitrationError(ResolverError):
    """Arbitration failed for a single candidate."""

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response


class ApplicationError(ResolverError):
    """A resolution could not be committed; the transaction was rolled back."""

    def __init__(self, candidate_id: str, message: str):
        self.candidate_id = candidate_id
        super().__init__(f"candidate {candidate_id}: {message}")


class ConsistencyError(ResolverError):
    """An identity or one-way transition contract was violated."""
