"""LLM provider backends."""

from .base import ArbitrationProvider
from .factory import available_providers, create_provider, register_provider

__all__ = ["ArbitrationProvider", "available_providers", "create_provider", "register_provider"]
