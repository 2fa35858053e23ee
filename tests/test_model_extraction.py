from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from labelcheck.domain import constants as C
from labelcheck.preflight.errors import ModelCallError
from labelcheck.preflight.evidence import EvidenceBundle, TextBlock
from labelcheck.preflight.jsonparse import ParseFailure
from labelcheck.preflight.model import ModelClient, OpenAIChatTransport, ReportExtractor, build_report_messages
from labelcheck.preflight.request import ProductFields


class FakeTransport:
    """Replays scripted replies; an Exception instance is raised instead of returned."""

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: List[str] = []

    def complete(self, *, model: str, messages: List[Dict[str, Any]], timeout: float) -> str:
        self.calls.append(model)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def _bundle() -> EvidenceBundle:
    return EvidenceBundle(
        fields=ProductFields(product_name="Pistachio Cream"),
        image_data_url="data:image/png;base64,iVBORw0KGgo=",
        text_blocks=[TextBlock("reference", "house_rules.md", "Rule one.")],
    )


def _client(transport, **kwargs) -> ModelClient:
    sleeps: List[float] = []
    client = ModelClient(
        transport,
        model="primary",
        sleep=sleeps.append,
        jitter=lambda: 0.0,
        **kwargs,
    )
    client.sleeps = sleeps
    return client


def test_exhausted_retries_yield_minimal_shell():
    transport = FakeTransport(ModelCallError("network/timeout: boom"))
    client = _client(transport, fallback_model="fallback", attempts=3)

    extraction = ReportExtractor(client).extract(_bundle())

    assert transport.calls == ["primary"] * 3 + ["fallback"] * 3
    assert client.sleeps == [1.0, 2.0, 1.0, 2.0]
    assert extraction.degraded
    checks = extraction.payload["checks"]
    assert [c["id"] for c in checks] == list(C.CANONICAL_IDS)
    assert all(c["status"] == C.STATUS_MISSING for c in checks)


def test_non_retryable_error_moves_to_fallback_model():
    reply = json.dumps({"summary": "fine", "checks": []})
    transport = FakeTransport(ModelCallError("HTTP 400", retryable=False), reply)
    client = _client(transport, fallback_model="fallback")

    extraction = ReportExtractor(client).extract(_bundle())

    assert transport.calls == ["primary", "fallback"]
    assert client.sleeps == []
    assert not extraction.degraded
    assert extraction.payload["summary"] == "fine"


def test_model_score_is_discarded_and_label_text_kept():
    reply = "```json\n" + json.dumps({
        "summary": "ok",
        "score": 99,
        "overall_status": "pass",
        "label_text": "Ingredienti: zucchero, pistacchio 60%",
        "checks": [],
    }) + "\n```"
    extraction = ReportExtractor(_client(FakeTransport(reply))).extract(_bundle())

    assert "score" not in extraction.payload
    assert "overall_status" not in extraction.payload
    assert "label_text" not in extraction.payload
    assert extraction.label_text == "Ingredienti: zucchero, pistacchio 60%"


def test_unparseable_answer_is_not_retried():
    transport = FakeTransport("I cannot help with that.")
    extraction = ReportExtractor(_client(transport)).extract(_bundle())
    assert transport.calls == ["primary"]
    assert extraction.degraded


def test_missing_transport_is_a_parse_failure():
    result = ModelClient(None, model="primary").complete_json([])
    assert isinstance(result, ParseFailure)
    assert result.reason == "model API not configured"


def test_report_messages_carry_image_and_fields():
    messages = build_report_messages(_bundle())
    assert messages[0]["role"] == "system"
    parts = messages[1]["content"]
    assert parts[0]["text"].startswith("Reference document (house_rules.md)")
    assert any(p.get("type") == "image_url" for p in parts)
    assert any("Pistachio Cream" in p.get("text", "") for p in parts)


def _openai_transport(handler) -> OpenAIChatTransport:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return OpenAIChatTransport("sk-test", base_url="https://llm.test/v1", http_client=http)


def test_openai_transport_returns_message_content():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "primary",
            "choices": [{"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": '{"checks": []}'}}],
        })

    text = _openai_transport(handler).complete(model="primary", messages=[], timeout=5)
    assert text == '{"checks": []}'


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"<html>gateway</html>", headers={"content-type": "application/json"}),
        httpx.Response(200, content=b"<html>gateway</html>", headers={"content-type": "text/html"}),
        httpx.Response(502, content=b"bad gateway"),
    ],
)
def test_openai_transport_maps_bad_upstream_replies(response):
    transport = _openai_transport(lambda request: response)
    with pytest.raises(ModelCallError) as exc_info:
        transport.complete(model="primary", messages=[], timeout=5)
    assert exc_info.value.retryable


def test_garbled_upstream_degrades_to_minimal_shell():
    transport = _openai_transport(
        lambda request: httpx.Response(200, content=b"<html>gateway</html>", headers={"content-type": "application/json"})
    )
    extraction = ReportExtractor(_client(transport, attempts=2)).extract(_bundle())
    assert extraction.degraded
    assert [c["id"] for c in extraction.payload["checks"]] == list(C.CANONICAL_IDS)
