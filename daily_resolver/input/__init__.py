"""Batch input parsing."""

from .batch_parser import Batch, load_batch, parse_batch

__all__ = ["Batch", "load_batch", "parse_batch"]
