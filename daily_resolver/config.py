"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- StorageConfig: SQLite database location
- ThresholdConfig: Similarity tiers, BM25 weights and lookback window
- ProviderConfig: LLM provider settings
- ArbitrationConfig: Arbitration prompt and retry settings
- PublicationConfig: Publication regeneration settings
- SourcesConfig: Source merging for auto-detected duplicates
- LoggingConfig: Logging behavior
- LangfuseConfig: Langfuse tracing settings
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from typing import Any

import yaml


@dataclass
class StorageConfig:
    """Configuration for the article store.

    Attributes:
        db_path: Path to the SQLite database holding articles, candidates,
                 publications and the full-text index
        busy_timeout_ms: How long a writer waits for a locked database
    """

    db_path: str = "data/resolver.db"
    busy_timeout_ms: int = 5000


@dataclass
class ThresholdConfig:
    """Similarity tiers for the classifier.

    Scores follow the BM25 convention: more negative means more similar.

    Attributes:
        high: Scores at or above this value are NEW without arbitration
        low: Scores at or below this value are automatic duplicates
        lookback_days: Only articles published within this window are compared
        top_k: Maximum number of ranked matches returned by the index
        headline_weight: BM25 column weight for headlines
        summary_weight: BM25 column weight for summaries
        body_weight: BM25 column weight for full bodies
        near_identical: Weighted rapidfuzz similarity (0-100) at which a match is
                        treated as the same text and scored at `low`, whatever
                        the corpus size
    """

    high: float = -80.0
    low: float = -201.0
    lookback_days: int = 30
    top_k: int = 10
    headline_weight: float = 10.0
    summary_weight: float = 5.0
    body_weight: float = 1.0
    near_identical: float = 92.0

    def validate(self) -> None:
        if self.high > 0:
            raise ValueError(f"thresholds.high must be <= 0, got {self.high}")
        if self.low >= self.high:
            raise ValueError(
                f"thresholds.low ({self.low}) must be below thresholds.high ({self.high})"
            )
        if self.lookback_days < 1:
            raise ValueError("thresholds.lookback_days must be at least 1")
        if self.top_k < 1:
            raise ValueError("thresholds.top_k must be at least 1")
        if not 0 < self.near_identical <= 100:
            raise ValueError("thresholds.near_identical must be in (0, 100]")


@dataclass
class ProviderConfig:
    """Configuration for LLM provider.

    Attributes:
        name: Provider name ("gemini" or "openai_compatible")
        model: Model identifier
        api_key_env: Environment variable name containing the API key
        base_url: Base URL for the provider API
        api_key: Optional inline API key (overrides env var)
        trust_env: Whether to respect system proxy settings for API requests
        timeout_seconds: HTTP timeout for a single provider call
    """

    name: str = "gemini"
    model: str = "gemini-2.5-flash"
    api_key_env: str = "GOOGLE_API_KEY"
    base_url: str = "https://generativelanguage.googleapis.com"
    api_key: str | None = None
    trust_env: bool = True
    timeout_seconds: float = 60.0


@dataclass
class ArbitrationConfig:
    """Configuration for ambiguous-tier arbitration.

    Attributes:
        retries: Retry attempts after the first failed call
        backoff_seconds: Base delay, doubled after every failed attempt
        max_chars: Maximum characters of each article body sent to the model
        max_sources: Maximum candidate sources listed in the prompt
        temperature: Sampling temperature
        max_output_tokens: Output token budget for one decision
    """

    retries: int = 2
    backoff_seconds: float = 1.0
    max_chars: int = 8000
    max_sources: int = 5
    temperature: float = 0.1
    max_output_tokens: int = 8000


@dataclass
class PublicationConfig:
    """Configuration for publication regeneration.

    Attributes:
        slug_prefix: Publication slugs are "{slug_prefix}-{date}"
        title: Human-readable digest name used in composed headlines
        use_llm: Let the provider write headline/summary when the article set changes
        max_summary_items: Number of headlines named in a composed summary
    """

    slug_prefix: str = "daily-threat-briefing"
    title: str = "Daily Threat Briefing"
    use_llm: bool = False
    max_summary_items: int = 5


@dataclass
class SourcesConfig:
    """Configuration for folding duplicate sources into canonical articles.

    Attributes:
        merge_duplicate_sources: Copy sources of DUPLICATE-AUTO candidates to the matched article
        title_similarity_threshold: Fuzzy match threshold (0-100) for same-website source titles
    """

    merge_duplicate_sources: bool = True
    title_similarity_threshold: int = 92


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        directory: Directory for log files
        filename: Name of the main log file
        llm_log_enabled: Whether to enable separate LLM interaction logging
        llm_log_detail: LLM log detail level ("response_only", "prompt_response")
        llm_log_redaction: Redaction mode for LLM logs ("none", "redact_content", "redact_urls")
        llm_log_file: Name of the LLM log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = True
    format: str = "jsonl"
    directory: str = "logs"
    filename: str = "resolver.jsonl"
    llm_log_enabled: bool = True
    llm_log_detail: str = "response_only"
    llm_log_redaction: str = "redact_urls"
    llm_log_file: str = "llm.jsonl"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse tracing.

    Attributes:
        enabled: Whether to enable Langfuse tracing
        public_key: Langfuse public key (optional)
        secret_key: Langfuse secret key (optional)
        host: Langfuse host URL (optional)
        environment: Langfuse environment label (optional)
        release: Langfuse release identifier (optional)
        redaction: Redaction mode for prompt/response payloads
        max_text_chars: Maximum characters for prompt/response payloads
    """

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None
    environment: str | None = None
    release: str | None = None
    redaction: str = "redact_urls"
    max_text_chars: int = 20000


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    arbitration: ArbitrationConfig = field(default_factory=ArbitrationConfig)
    publication: PublicationConfig = field(default_factory=PublicationConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)


_SECTIONS: dict[str, type] = {
    "storage": StorageConfig,
    "thresholds": ThresholdConfig,
    "provider": ProviderConfig,
    "arbitration": ArbitrationConfig,
    "publication": PublicationConfig,
    "sources": SourcesConfig,
    "logging": LoggingConfig,
    "langfuse": LangfuseConfig,
}


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    cfg = _merge_config(AppConfig(), raw)
    cfg.thresholds.validate()
    return cfg


def load_thresholds(path: str | None) -> ThresholdConfig:
    """Re-read only the thresholds section, for recalibration between batches."""
    return load_config(path).thresholds


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    return _fromdict(data)


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(**{name: cls(**data.get(name, {})) for name, cls in _SECTIONS.items()})


def get_api_key(cfg: ProviderConfig) -> str | None:
    """Get API key from inline config or environment variable."""
    if cfg.api_key:
        return cfg.api_key
    return os.getenv(cfg.api_key_env)
