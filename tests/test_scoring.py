from labelcheck.domain import constants as C
from labelcheck.domain.models import Check, ProductInfo, Report
from labelcheck.preflight.scoring import PENALTIES, finalize, score_checks


def _all_ok():
    return [Check.canonical(i, status=C.STATUS_OK, severity=C.SEVERITY_LOW) for i in C.CANONICAL_IDS]


def _high_issue(check_id=C.QUID):
    return Check.canonical(check_id, status=C.STATUS_ISSUE, severity=C.SEVERITY_HIGH)


def test_all_ok_is_a_clean_pass():
    assert score_checks(_all_ok()) == (100, C.OVERALL_PASS)


def test_scoring_is_deterministic():
    checks = _all_ok()
    checks[3] = Check.canonical(C.ALLERGEN_EMPHASIS, status=C.STATUS_ISSUE, severity=C.SEVERITY_MEDIUM)
    assert score_checks(checks) == score_checks(list(checks))
    assert score_checks(checks) == (100 - PENALTIES[C.SEVERITY_MEDIUM], C.OVERALL_CAUTION)


def test_adding_high_findings_only_moves_status_forward():
    checks = _all_ok()
    first, status_first = score_checks(checks)

    checks[4] = _high_issue(C.QUID)
    second, status_second = score_checks(checks)

    checks[5] = _high_issue(C.NET_QUANTITY)
    third, status_third = score_checks(checks)

    assert first > second > third
    assert (status_first, status_second, status_third) == (C.OVERALL_PASS, C.OVERALL_CAUTION, C.OVERALL_FAIL)


def test_low_only_findings_still_pass():
    checks = _all_ok()
    checks[6] = Check.canonical(C.DATE_MARKING, status=C.STATUS_MISSING, severity=C.SEVERITY_LOW)
    score, status = score_checks(checks)
    assert score == 97
    assert status == C.OVERALL_PASS


def test_score_is_clamped_at_zero():
    checks = [_high_issue(i) for i in C.CANONICAL_IDS]
    assert score_checks(checks) == (0, C.OVERALL_FAIL)


def test_finalize_overwrites_any_previous_values():
    report = Report(product=ProductInfo(), checks=_all_ok(), score=12, overall_status=C.OVERALL_FAIL)
    finalize(report)
    assert report.score == 100
    assert report.overall_status == C.OVERALL_PASS
