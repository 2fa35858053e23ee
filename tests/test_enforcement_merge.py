from labelcheck.domain import constants as C
from labelcheck.domain.models import Check, ProductInfo, Report
from labelcheck.preflight.enforce import Enforcer, fold
from labelcheck.preflight.normalize import ReportNormalizer, coerce_check, normalize_status
from labelcheck.preflight.request import ProductFields
from labelcheck.preflight.rules import RuleContext


def _report(*checks):
    return Report(product=ProductInfo(name="Test"), checks=list(checks))


def _ctx(text, **fields):
    return RuleContext.build(ProductFields(**fields), [text])


def _only(report, check_id):
    matches = [c for c in report.checks if c.id == check_id]
    assert len(matches) == 1
    return matches[0]


def test_duplicate_net_quantity_checks_fold_to_missing():
    report = _report(
        Check(id=C.NET_QUANTITY, title="Net quantity", status=C.STATUS_OK, severity=C.SEVERITY_LOW, detail="looks fine"),
        Check(id=C.NET_QUANTITY, title="Net quantity", status=C.STATUS_MISSING, severity=C.SEVERITY_MEDIUM, detail="no unit"),
    )
    Enforcer().enforce(report, _ctx("Ingredients: sugar, cocoa"))
    net = _only(report, C.NET_QUANTITY)
    assert net.status == C.STATUS_MISSING


def test_every_canonical_check_present_exactly_once():
    report = _report(Check(id="font_size", title="Font size", status=C.STATUS_ISSUE))
    Enforcer().enforce(report, _ctx("Ingredients: sugar"))
    assert [c.id for c in report.checks] == list(C.CANONICAL_IDS)
    assert report.summary


def test_rule_finding_overrides_optimistic_model():
    report = _report(Check.canonical(C.QUID, status=C.STATUS_OK, severity=C.SEVERITY_LOW, detail="fine"))
    Enforcer().enforce(report, _ctx("Ingredients: pistachio, sugar", product_name="Pistachio Cream"))
    quid = _only(report, C.QUID)
    assert (quid.status, quid.severity) == (C.STATUS_ISSUE, C.SEVERITY_HIGH)


def test_ok_rule_never_clears_a_model_finding():
    report = _report(
        Check.canonical(C.CLAIMS, status=C.STATUS_ISSUE, severity=C.SEVERITY_MEDIUM, detail="'boosts energy' on front")
    )
    Enforcer().enforce(report, _ctx("Ingredients: sugar"))
    claims = _only(report, C.CLAIMS)
    assert claims.status == C.STATUS_ISSUE
    assert "boosts energy" in claims.detail


def test_blank_evidence_forces_everything_missing():
    report = _report(Check.canonical(C.SALES_NAME, status=C.STATUS_OK))
    Enforcer().enforce(report, _ctx(""), blank=True)
    assert all(c.status == C.STATUS_MISSING for c in report.checks)
    assert _only(report, C.QUID).severity == C.SEVERITY_HIGH
    assert len(report.checks) == len(C.CANONICAL_IDS)


def test_fold_takes_worst_status_and_highest_severity():
    merged = fold([
        Check(id="x", title="X", status=C.STATUS_ISSUE, severity=C.SEVERITY_LOW, detail="a", sources=["s1"]),
        Check(id="x", title="X", status=C.STATUS_ISSUE, severity=C.SEVERITY_HIGH, detail="b", sources=["s2"]),
    ])
    assert merged.status == C.STATUS_ISSUE
    assert merged.severity == C.SEVERITY_HIGH
    assert merged.detail == "• a\n• b"
    assert merged.sources == ["s1", "s2"]


def test_model_titles_map_onto_canonical_ids():
    check = coerce_check({"title": "Quantitative ingredient declaration", "status": "compliant"})
    assert check.id == C.QUID
    assert check.title == "QUID"
    assert check.status == C.STATUS_OK


def test_nutrition_claims_title_lands_on_claims():
    check = coerce_check({"title": "Nutrition and health claims", "status": "issue", "detail": "'rich in protein' unsupported"})
    assert check.id == C.CLAIMS

    report = _report(check)
    Enforcer().enforce(report, _ctx("Ingredients: sugar"))
    assert _only(report, C.CLAIMS).status == C.STATUS_ISSUE
    assert "rich in protein" not in _only(report, C.NUTRITION_DECLARATION).detail


def test_unknown_status_words_become_issues():
    assert normalize_status("unknown") == C.STATUS_ISSUE
    assert normalize_status("not found") == C.STATUS_MISSING


def test_normalizer_falls_back_to_caller_fields_and_ignores_model_score():
    fields = ProductFields(product_name="Pistachio Cream", country_of_sale="Italy", languages_provided=("it",))
    report = ReportNormalizer(fields).normalize({
        "product": {"name": ""},
        "score": 100,
        "overall_status": "pass",
        "checks": [{"id": "sales_name", "status": "ok", "sources": ["a", "b", "c", "d"]}, "garbage"],
    })
    assert report.product.name == "Pistachio Cream"
    assert report.product.languages_provided == ["it"]
    assert report.score == 0
    assert len(report.checks) == 1
    assert report.checks[0].sources == ["a", "b", "c"]
