"""Tests for arbitration reply validation and retry behavior."""

from __future__ import annotations

import json

import httpx
import pytest

from daily_resolver.config import ArbitrationConfig
from daily_resolver.core.errors import ArbitrationError
from daily_resolver.core.types import Article, DuplicateStory, MergeStory, NewStory
from daily_resolver.llm.arbitration import (
    Arbitrator,
    call_with_retry,
    parse_arbitration_payload,
    parse_json_object,
)

from resolver_fixtures import ScriptedProvider, make_candidate, update_reply


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://llm.example.com/generate")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


def _existing() -> Article:
    return Article(
        id="art-xenon",
        slug="xenon",
        headline="Xenon breaches Yellowtail",
        summary="Servers encrypted",
        body="Full report",
        pub_date="2025-10-13",
    )


def test_parse_new_and_skip():
    assert parse_arbitration_payload('{"decision": "NEW", "reasoning": "Different victim"}') == NewStory(
        reasoning="Different victim"
    )
    skip = parse_arbitration_payload('{"decision": "SKIP", "reasoning": " Same incident "}')
    assert isinstance(skip, DuplicateStory)
    assert skip.reasoning == "Same incident"


def test_parse_update_builds_merge_content():
    decision = parse_arbitration_payload(json.dumps(update_reply()))

    assert isinstance(decision, MergeStory)
    merge = decision.merge
    assert merge.datetime == "2025-10-14T09:30:00Z"
    assert merge.severity_change == "increased"
    assert merge.sources[0].url == "https://wire.example.org/yellowtail"
    assert merge.sources[0].website == "wire.example.org"


def test_parse_accepts_fenced_json():
    content = 'Here you go:\n```json\n{"decision": "NEW", "reasoning": "Unrelated"}\n```\n'
    assert isinstance(parse_arbitration_payload(content), NewStory)


@pytest.mark.parametrize(
    "content",
    [
        "",
        "not json at all",
        "[1, 2]",
        '{"decision": "MAYBE", "reasoning": "?"}',
        '{"decision": "NEW"}',
        '{"decision": "SKIP", "reasoning": "   "}',
        '{"decision": "UPDATE", "reasoning": "More detail"}',
    ],
)
def test_parse_rejects_malformed_replies(content):
    with pytest.raises(ArbitrationError):
        parse_arbitration_payload(content)


@pytest.mark.parametrize(
    "field, value",
    [
        ("datetime", "yesterday"),
        ("summary", ""),
        ("content", "  "),
        ("severity_change", "worse"),
        ("sources", []),
        ("sources", [{"title": "no url"}]),
    ],
)
def test_parse_rejects_incomplete_update(field, value):
    reply = update_reply()
    reply["update"][field] = value
    with pytest.raises(ArbitrationError) as excinfo:
        parse_arbitration_payload(json.dumps(reply))
    assert excinfo.value.raw_response is not None


def test_parse_rejects_update_missing_field():
    reply = update_reply()
    del reply["update"]["severity_change"]
    with pytest.raises(ArbitrationError, match="severity_change"):
        parse_arbitration_payload(json.dumps(reply))


def test_parse_json_object_rejects_empty_fence():
    with pytest.raises(ArbitrationError):
        parse_json_object("```json\n```")


def test_retry_recovers_from_transport_error():
    sleeps: list[float] = []
    outcomes = [httpx.ConnectError("refused"), _status_error(503), "ok"]

    def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert call_with_retry(flaky, retries=2, backoff_seconds=0.5, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5, 1.0]


def test_retry_gives_up_after_budget():
    sleeps: list[float] = []
    calls = []

    def always_down():
        calls.append(1)
        raise httpx.ReadTimeout("slow")

    with pytest.raises(ArbitrationError, match="after 3 attempt"):
        call_with_retry(always_down, retries=2, backoff_seconds=1.0, sleep=sleeps.append)
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_rate_limit_is_retried():
    outcomes = [_status_error(429), "ok"]

    def limited():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert call_with_retry(limited, retries=1, backoff_seconds=0.1, sleep=lambda s: None) == "ok"


def test_client_error_is_not_retried():
    calls = []

    def rejected():
        calls.append(1)
        raise _status_error(400)

    with pytest.raises(ArbitrationError, match="HTTP 400"):
        call_with_retry(rejected, retries=3, backoff_seconds=0.1, sleep=lambda s: None)
    assert len(calls) == 1


def test_arbitrator_counts_calls_and_parses():
    candidate = make_candidate("cand", "Yellowtail update", "Ransom", "40 BTC")
    provider = ScriptedProvider({"cand": [httpx.ConnectError("down"), update_reply()]})
    sleeps: list[float] = []
    arbitrator = Arbitrator(provider, ArbitrationConfig(retries=2, backoff_seconds=0.5), sleep=sleeps.append)

    decision = arbitrator.arbitrate(candidate, _existing())

    assert isinstance(decision, MergeStory)
    assert arbitrator.calls == 1
    assert provider.calls == ["cand", "cand"]
    assert sleeps == [0.5]


def test_arbitrator_malformed_reply_is_not_retried():
    candidate = make_candidate("cand", "h", "s", "b")
    provider = ScriptedProvider({"cand": ['{"decision": "PERHAPS", "reasoning": "x"}', update_reply()]})
    arbitrator = Arbitrator(provider, ArbitrationConfig(retries=2), sleep=lambda s: None)

    with pytest.raises(ArbitrationError, match="Unknown decision"):
        arbitrator.arbitrate(candidate, _existing())
    assert provider.calls == ["cand"]


def test_undecodable_provider_reply_becomes_arbitration_error():
    candidate = make_candidate("cand", "h", "s", "b")
    provider = ScriptedProvider({"cand": json.JSONDecodeError("Expecting value", "<html>", 0)})
    arbitrator = Arbitrator(provider, ArbitrationConfig(retries=2), sleep=lambda s: None)

    with pytest.raises(ArbitrationError, match="JSONDecodeError"):
        arbitrator.arbitrate(candidate, _existing())
    assert provider.calls == ["cand"]
    assert arbitrator.calls == 1


def test_unexpected_provider_error_is_not_retried():
    calls = []

    def broken():
        calls.append(1)
        raise KeyError("candidates")

    with pytest.raises(ArbitrationError, match="KeyError"):
        call_with_retry(broken, retries=3, backoff_seconds=0.1, sleep=lambda s: None)
    assert len(calls) == 1
