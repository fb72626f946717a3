"""OpenAI-compatible chat completions provider.

Works with any endpoint that implements `POST {base_url}/chat/completions`
with bearer authentication and JSON-object response format.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from ...config import ArbitrationConfig, LoggingConfig, ProviderConfig, PublicationConfig
from ...core.types import Article, Candidate
from ...utils.logging import log_event, redact_text, redact_value, truncate_text
from ..prompts import build_arbitration_prompt, build_publication_prompt
from ..tracing import record_span_error, set_span_output, start_span
from .base import ArbitrationProvider

_SYSTEM_PROMPT = "You are a careful news editor. Reply with a single JSON object only."


class OpenAICompatibleProvider(ArbitrationProvider):
    name = "openai_compatible"

    def __init__(
        self,
        cfg: ProviderConfig,
        arbitration_cfg: ArbitrationConfig,
        api_key: str | None,
        log_cfg: LoggingConfig,
        llm_logger,
    ):
        if not api_key:
            raise ValueError(f"Missing API key (set {cfg.api_key_env} or provider.api_key)")
        self.cfg = cfg
        self.arbitration_cfg = arbitration_cfg
        self.api_key = api_key
        self.log_cfg = log_cfg
        self.llm_logger = llm_logger

    def arbitrate(self, candidate: Candidate, existing: Article) -> str:
        prompt = build_arbitration_prompt(candidate, existing, self.arbitration_cfg)
        return self._complete(
            prompt,
            span_name="openai.arbitrate",
            event="llm_arbitration",
            context={"candidate_id": candidate.id, "matched_article_id": existing.id},
        )

    def write_publication(
        self,
        date: str,
        articles: Sequence[Article],
        cfg: PublicationConfig,
    ) -> str:
        prompt = build_publication_prompt(date, articles, cfg)
        return self._complete(
            prompt,
            span_name="openai.write_publication",
            event="llm_publication",
            context={"pub_date": date, "article_count": len(articles)},
        )

    def _complete(self, prompt: str, span_name: str, event: str, context: dict[str, Any]) -> str:
        payload = {
            "model": self.cfg.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.arbitration_cfg.temperature,
            "max_tokens": self.arbitration_cfg.max_output_tokens,
            "response_format": {"type": "json_object"},
        }
        with start_span(
            span_name,
            kind="llm",
            input_value=prompt,
            attributes={"llm.model": self.cfg.model, "llm.provider": self.name, **context},
        ) as span:
            try:
                data = self._post(payload)
            except httpx.HTTPError as exc:
                record_span_error(span, exc)
                self._log_llm_response(event, "provider_error", str(exc), prompt, context)
                raise
            content = _extract_message(data)
            set_span_output(span, content)
            self._log_llm_response(event, "ok", content, prompt, context)
            return content

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.cfg.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        with httpx.Client(timeout=self.cfg.timeout_seconds, trust_env=self.cfg.trust_env) as client:
            resp = client.post(url, headers=headers, json=payload)
            resp.raise_for_status()
            return resp.json()

    def _log_llm_response(
        self,
        event: str,
        status: str,
        content: str,
        prompt: str,
        context: dict[str, Any],
    ) -> None:
        if self.llm_logger is None:
            return
        redaction = self.log_cfg.llm_log_redaction
        payload: dict[str, Any] = {
            "event": event,
            "status": status,
            "provider": self.name,
            "model": self.cfg.model,
            "base_url": redact_value(self.cfg.base_url, redaction),
            **context,
        }
        if self.log_cfg.llm_log_detail == "prompt_response":
            payload["raw_prompt"] = truncate_text(redact_text(prompt, redaction))
        payload["raw_response"] = truncate_text(redact_text(content, redaction))
        log_event(self.llm_logger, "LLM response", **payload)


def _extract_message(data: dict[str, Any]) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content or ""
