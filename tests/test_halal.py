import json

from labelcheck.domain import constants as C
from labelcheck.preflight.evidence import EvidenceBundle
from labelcheck.preflight.halal import (
    ADDITIVES,
    ALCOHOL,
    CERTIFICATION,
    GELATIN,
    PORK,
    HalalAuditor,
    HalalScanner,
    halal_key,
)
from labelcheck.preflight.model import ModelClient
from labelcheck.preflight.request import ProductFields
from labelcheck.preflight.rules import RuleContext


class _Transport:
    def __init__(self, reply: str) -> None:
        self.reply = reply

    def complete(self, *, model, messages, timeout):
        return self.reply


def _ctx(text):
    return RuleContext.build(ProductFields(product_name="Gummies"), [text])


def test_scan_flags_problem_ingredients():
    results = HalalScanner().scan("Ingredients: sugar, pork gelatin, wine vinegar, colour: E120")
    assert (results[PORK].status, results[PORK].severity) == (C.STATUS_ISSUE, C.SEVERITY_HIGH)
    assert results[ALCOHOL].status == C.STATUS_ISSUE
    assert results[GELATIN].status == C.STATUS_ISSUE
    assert results[ADDITIVES].status == C.STATUS_ISSUE
    assert results[CERTIFICATION].status == C.STATUS_MISSING


def test_scan_accepts_qualified_gelatin():
    results = HalalScanner().scan("Ingredients: glucose syrup, fish gelatine, citric acid. Halal certified.")
    assert results[PORK].is_ok
    assert results[GELATIN].is_ok
    assert results[CERTIFICATION].is_ok


def test_scan_without_text_marks_everything_missing():
    results = HalalScanner().scan("   ")
    assert set(results) == {PORK, ALCOHOL, GELATIN, ADDITIVES, CERTIFICATION}
    assert all(c.status == C.STATUS_MISSING and c.severity == C.SEVERITY_MEDIUM for c in results.values())


def test_halal_titles_do_not_collide_with_eu_ids():
    assert halal_key("Pork-derived ingredients") == PORK
    assert halal_key("Cross-contamination") == "cross_contamination"


def test_audit_merges_model_findings_with_scan():
    reply = json.dumps({
        "checks": [
            {"title": "Pork-derived ingredients", "status": "ok", "severity": "low"},
            {"title": "Cross-contamination", "status": "issue", "severity": "low", "detail": "Shared line"},
        ]
    })
    auditor = HalalAuditor(ModelClient(_Transport(reply), model="m"))
    bundle = EvidenceBundle(fields=ProductFields(product_name="Gummies"))

    checks = auditor.audit(bundle, _ctx("Ingredients: sugar, pork gelatin"))

    by_id = {c.id: c for c in checks}
    assert by_id[PORK].status == C.STATUS_ISSUE
    assert by_id["cross_contamination"].detail == "Shared line"
    assert not set(by_id) & set(C.CANONICAL_IDS)


def test_audit_without_model_uses_scan_only():
    auditor = HalalAuditor(None)
    bundle = EvidenceBundle(fields=ProductFields(product_name="Gummies"))
    checks = auditor.audit(bundle, _ctx("Ingredients: sugar"))
    assert [c.id for c in checks] == [PORK, ALCOHOL, GELATIN, ADDITIVES, CERTIFICATION]
