"""Google Gemini provider for arbitration and publication writing."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ...config import ArbitrationConfig, LoggingConfig, ProviderConfig, PublicationConfig
from ...core.types import Article, Candidate
from ...utils.logging import log_event, redact_text, redact_value, truncate_text
from ..prompts import build_arbitration_prompt, build_publication_prompt
from ..tracing import record_span_error, set_span_output, start_span
from .base import ArbitrationProvider


_SOURCE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "url": {"type": "STRING"},
        "title": {"type": "STRING"},
    },
    "required": ["url", "title"],
}


_ARBITRATION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "decision": {"type": "STRING", "enum": ["NEW", "SKIP", "UPDATE"]},
        "reasoning": {"type": "STRING"},
        "update": {
            "type": "OBJECT",
            "properties": {
                "datetime": {"type": "STRING"},
                "summary": {"type": "STRING"},
                "content": {"type": "STRING"},
                "sources": {"type": "ARRAY", "items": _SOURCE_SCHEMA},
                "severity_change": {
                    "type": "STRING",
                    "enum": ["increased", "decreased", "unchanged", "unknown"],
                },
            },
            "required": ["datetime", "summary", "content", "sources", "severity_change"],
        },
    },
    "required": ["decision", "reasoning"],
}


_PUBLICATION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "headline": {"type": "STRING"},
        "summary": {"type": "STRING"},
    },
    "required": ["headline", "summary"],
}


class GeminiProvider(ArbitrationProvider):
    """Gemini-backed provider using structured JSON output."""

    name = "gemini"

    def __init__(
        self,
        cfg: ProviderConfig,
        arbitration_cfg: ArbitrationConfig,
        api_key: str | None,
        log_cfg: LoggingConfig,
        llm_logger,
    ):
        if not api_key:
            raise ValueError("Missing Google API key")
        self.cfg = cfg
        self.arbitration_cfg = arbitration_cfg
        self.api_key = api_key
        self.log_cfg = log_cfg
        self.llm_logger = llm_logger

    def arbitrate(self, candidate: Candidate, existing: Article) -> str:
        prompt = build_arbitration_prompt(candidate, existing, self.arbitration_cfg)
        payload = self._build_payload(prompt, _ARBITRATION_RESPONSE_SCHEMA)
        return self._generate(
            prompt,
            payload,
            span_name="gemini.arbitrate",
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
        payload = self._build_payload(prompt, _PUBLICATION_RESPONSE_SCHEMA)
        return self._generate(
            prompt,
            payload,
            span_name="gemini.write_publication",
            event="llm_publication",
            context={"pub_date": date, "article_count": len(articles)},
        )

    def _generate(
        self,
        prompt: str,
        payload: dict[str, Any],
        span_name: str,
        event: str,
        context: dict[str, Any],
    ) -> str:
        with start_span(
            span_name,
            kind="llm",
            input_value=prompt,
            attributes={"llm.model": self.cfg.model, "llm.provider": "gemini", **context},
        ) as span:
            try:
                data = self._post(payload)
            except httpx.HTTPError as exc:
                record_span_error(span, exc)
                self._log_llm_response(event, "provider_error", str(exc), prompt, context)
                raise
            content = _extract_text(data)
            set_span_output(span, content)
            self._log_llm_response(event, "ok", content, prompt, context)
            return content

    def _build_payload(self, prompt: str, schema: dict[str, Any]) -> dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.arbitration_cfg.temperature,
                "maxOutputTokens": self.arbitration_cfg.max_output_tokens,
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.cfg.base_url}/v1beta/models/{self.cfg.model}:generateContent"
        params = {"key": self.api_key}
        with httpx.Client(timeout=self.cfg.timeout_seconds, trust_env=self.cfg.trust_env) as client:
            resp = client.post(url, params=params, json=payload)
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
        detail = self.log_cfg.llm_log_detail
        redaction = self.log_cfg.llm_log_redaction
        payload: dict[str, Any] = {
            "event": event,
            "status": status,
            "provider": "gemini",
            "model": self.cfg.model,
            "base_url": redact_value(self.cfg.base_url, redaction),
            **context,
        }
        if detail == "prompt_response":
            payload["raw_prompt"] = truncate_text(redact_text(prompt, redaction))
        payload["raw_response"] = truncate_text(redact_text(content, redaction))
        log_event(self.llm_logger, "LLM response", **payload)


def _extract_text(data: dict[str, Any]) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""

    if not isinstance(parts, list):
        return ""

    non_thought_chunks: list[str] = []
    all_chunks: list[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        text = part.get("text")
        if not text:
            continue
        chunk = str(text)
        all_chunks.append(chunk)
        if not part.get("thought"):
            non_thought_chunks.append(chunk)

    if non_thought_chunks:
        return "".join(non_thought_chunks)
    return "".join(all_chunks)
