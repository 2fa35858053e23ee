from __future__ import annotations

from typing import Iterable, Tuple

from ..domain import constants as C
from ..domain.models import Check, Report

PENALTIES = {C.SEVERITY_HIGH: 15, C.SEVERITY_MEDIUM: 8, C.SEVERITY_LOW: 3}


def score_checks(checks: Iterable[Check]) -> Tuple[int, str]:
    """Return (score, overall_status) for a finished check list.

    Pure: the same checks always yield the same result.
    """
    score = 100
    high = 0
    medium = 0
    for check in checks:
        if check.is_ok:
            continue
        score -= PENALTIES.get(check.severity, PENALTIES[C.SEVERITY_MEDIUM])
        if check.severity == C.SEVERITY_HIGH:
            high += 1
        elif check.severity != C.SEVERITY_LOW:
            medium += 1
    score = max(0, min(100, score))

    if high >= 2:
        status = C.OVERALL_FAIL
    elif high or medium:
        status = C.OVERALL_CAUTION
    else:
        status = C.OVERALL_PASS
    return score, status


def finalize(report: Report) -> Report:
    report.score, report.overall_status = score_checks(report.checks)
    return report
