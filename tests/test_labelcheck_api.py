from __future__ import annotations

import base64
import json
import time
from typing import Any, Dict, List

import httpx
import pytest
from starlette.testclient import TestClient

from labelcheck import __version__
from labelcheck.api import create_app
from labelcheck.domain import constants as C
from labelcheck.preflight.delivery import ReportMailer
from labelcheck.preflight.errors import ModelCallError
from labelcheck.preflight.evidence import EvidenceAssembler
from labelcheck.preflight import service as service_module
from labelcheck.preflight.model import ModelClient, OpenAIChatTransport, ReportExtractor
from labelcheck.preflight.service import PreflightService

IMAGE = "data:image/png;base64,iVBORw0KGgo="

MODEL_REPLY = json.dumps({
    "product": {"name": "Pistachio Cream", "country_of_sale": "Italy", "languages_provided": ["it"]},
    "summary": "Label mostly complete.",
    "label_text": "Crema di pistacchio\nIngredienti: zucchero, pistacchio 60%, olio di girasole, latte scremato in polvere.",
    "score": 100,
    "overall_status": "pass",
    "checks": [
        {"id": "allergen_emphasis", "title": "Allergen emphasis", "status": "ok", "severity": "low"},
        {"id": "ingredient_list", "title": "Ingredient list", "status": "ok", "severity": "low"},
    ],
})


class FakeTransport:
    def __init__(self, reply: Any) -> None:
        self.reply = reply
        self.calls: List[str] = []

    def complete(self, *, model: str, messages: List[Dict[str, Any]], timeout: float) -> str:
        self.calls.append(model)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class BrokenRenderer:
    def render(self, *args: Any, **kwargs: Any) -> bytes:
        raise RuntimeError("boom")


class BrokenAssembler:
    def assemble(self, request):
        raise RuntimeError("disk unavailable")


def _client(reply: Any = MODEL_REPLY, *, transport: Any = None, **overrides: Any) -> TestClient:
    model = ModelClient(transport or FakeTransport(reply), model="test-model", sleep=lambda _: None, jitter=lambda: 0.0)
    kwargs: Dict[str, Any] = {
        "assembler": EvidenceAssembler(),
        "extractor": ReportExtractor(model),
        "mailer": ReportMailer(None),
    }
    kwargs.update(overrides)
    return TestClient(create_app(service=PreflightService(**kwargs)))


def _pistachio(**extra: Any) -> Dict[str, Any]:
    body = {
        "product_name": "Pistachio Cream",
        "country_of_sale": "Italy",
        "languages_provided": ["it"],
        "label_image_data_url": IMAGE,
    }
    body.update(extra)
    return body


def _checks(body: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {c["id"]: c for c in body["report"]["checks"]}


def test_health_endpoint():
    resp = _client().get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["version"] == __version__
    assert body["ts"]


def test_non_post_is_rejected():
    resp = _client().get("/api/labelcheck")
    assert resp.status_code == 405
    assert resp.json() == {"error": "Use POST"}


def test_invalid_json_is_a_bad_request():
    resp = _client().post("/api/labelcheck", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["ok"] is False


def test_missing_label_is_a_bad_request():
    resp = _client().post("/api/labelcheck", json={"product_name": "Pistachio Cream"})
    assert resp.status_code == 400
    assert "label_image_data_url" in resp.json()["error"]


def test_pistachio_example_is_caution():
    resp = _client().post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 200
    body = resp.json()
    checks = _checks(body)

    assert [c["id"] for c in body["report"]["checks"]] == list(C.CANONICAL_IDS)
    assert checks["ingredient_list"]["status"] == "ok"
    assert checks["quid"]["status"] == "ok"
    assert (checks["allergen_emphasis"]["status"], checks["allergen_emphasis"]["severity"]) == ("issue", "medium")
    assert body["report"]["overall_status"] == "caution"
    assert body["score"] == body["report"]["score"] < 100
    assert body["email_status"] == "skipped: no recipient"
    assert base64.b64decode(body["pdf_base64"]).startswith(b"%PDF-")


def test_halal_checks_are_returned_but_not_scored():
    plain = _client().post("/api/labelcheck", json=_pistachio()).json()
    halal = _client().post("/api/labelcheck", json=_pistachio(halal_audit=True)).json()
    assert halal["halal_audit"] is True
    assert {c["id"] for c in halal["halal_checks"]} >= {"pork", "alcohol", "gelatin", "additives", "certification"}
    assert halal["score"] == plain["score"]


def test_return_pdf_false_omits_document():
    body = _client().post("/api/labelcheck", json=_pistachio(return_pdf=False)).json()
    assert "pdf_base64" not in body


def test_render_failure_still_returns_a_document():
    resp = _client(renderer=BrokenRenderer()).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 200
    body = resp.json()
    assert "boom" in body["pdf_error"]
    assert base64.b64decode(body["pdf_base64"]).startswith(b"%PDF-")


def test_model_outage_degrades_to_rule_only_report():
    resp = _client(reply=ModelCallError("network/timeout: down")).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 200
    body = resp.json()
    assert [c["id"] for c in body["report"]["checks"]] == list(C.CANONICAL_IDS)
    assert any("degraded" in note for note in body["notes"])


def test_unexpected_stage_failure_reports_stage():
    resp = _client(assembler=BrokenAssembler()).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 500
    body = resp.json()
    assert body == {"ok": False, "error": "disk unavailable", "stage": "assembly"}


class SlowAssembler:
    def assemble(self, request):
        time.sleep(0.5)
        return EvidenceAssembler().assemble(request)


class BrokenExtractor:
    client = ModelClient(None, model="test-model")

    def extract(self, bundle):
        raise ValueError("unexpected SDK failure")


def test_blank_input_never_consults_the_model():
    transport = FakeTransport(MODEL_REPLY)
    resp = _client(transport=transport).post(
        "/api/labelcheck", json={"label_image_data_url": "data:text/plain;base64,aGVsbG8="}
    )
    assert resp.status_code == 200
    checks = _checks(resp.json())
    assert transport.calls == []
    assert list(checks) == list(C.CANONICAL_IDS)
    assert all(c["status"] == "missing" for c in checks.values())
    assert checks["quid"]["severity"] == "high"


def test_garbled_model_gateway_degrades_instead_of_failing():
    gateway = httpx.Client(transport=httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"<html>gateway</html>", headers={"content-type": "application/json"})
    ))
    transport = OpenAIChatTransport("sk-test", base_url="https://llm.test/v1", http_client=gateway)
    resp = _client(transport=transport).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 200
    assert any("degraded" in note for note in resp.json()["notes"])


def test_extractor_crash_degrades_to_rule_only_report():
    resp = _client(extractor=BrokenExtractor()).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 200
    body = resp.json()
    assert [c["id"] for c in body["report"]["checks"]] == list(C.CANONICAL_IDS)
    assert any("unexpected SDK failure" in note for note in body["notes"])


def test_slow_document_parsing_is_bounded():
    resp = _client(assembler=SlowAssembler(), parse_timeout=0.05).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 500
    body = resp.json()
    assert body["stage"] == "assembly"
    assert "timed out" in body["error"]


def test_static_document_when_fallback_renderer_breaks(monkeypatch: pytest.MonkeyPatch):
    def no_fitz(*args, **kwargs):
        raise RuntimeError("PyMuPDF unavailable")

    monkeypatch.setattr(service_module, "render_fallback", no_fitz)
    resp = _client(renderer=BrokenRenderer()).post("/api/labelcheck", json=_pistachio())
    assert resp.status_code == 200
    body = resp.json()
    assert "fallback failed" in body["pdf_error"]
    assert base64.b64decode(body["pdf_base64"]).startswith(b"%PDF-")
