"""Name -> provider class registry used to build the arbitration backend."""

from __future__ import annotations

from typing import Callable

from ...config import ArbitrationConfig, LoggingConfig, ProviderConfig, get_api_key
from .base import ArbitrationProvider
from .gemini import GeminiProvider
from .openai_compatible import OpenAICompatibleProvider

ProviderClass = type[ArbitrationProvider]

_REGISTRY: dict[str, ProviderClass] = {}


def _canonical(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def register_provider(*names: str) -> Callable[[ProviderClass], ProviderClass]:
    """Register a provider class under one or more config names."""

    def decorator(cls: ProviderClass) -> ProviderClass:
        for name in names:
            _REGISTRY[_canonical(name)] = cls
        return cls

    return decorator


register_provider("gemini")(GeminiProvider)
register_provider("openai", "openai_compatible")(OpenAICompatibleProvider)


def available_providers() -> list[str]:
    return sorted(_REGISTRY)


def create_provider(
    provider_cfg: ProviderConfig,
    arbitration_cfg: ArbitrationConfig,
    log_cfg: LoggingConfig,
    llm_logger,
) -> ArbitrationProvider:
    """Instantiate the provider named by `provider.name`.

    Names are case-insensitive and "-" is read as "_", so "OpenAI-Compatible"
    resolves like "openai_compatible". Raises ValueError for unknown names.
    """
    cls = _REGISTRY.get(_canonical(provider_cfg.name))
    if cls is None:
        raise ValueError(
            f"Unsupported provider: {provider_cfg.name}. "
            f"Supported: {', '.join(available_providers())}"
        )
    return cls(provider_cfg, arbitration_cfg, get_api_key(provider_cfg), log_cfg, llm_logger)
