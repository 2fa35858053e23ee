"""Merge model checks with the deterministic rule results.

Policy, per canonical id:
  1. Model checks mapping to the same id are folded into one entry: ok only
     if every contributor is ok, else missing if any is missing, else issue;
     severity is the maximum; detail/fix are bullet-joined; sources unioned.
  2. A non-ok rule result overrides the folded entry.
  3. An ok rule result only confirms an entry that is already ok; it never
     turns a failing model finding into ok.
  4. Exactly one entry per canonical id survives, in canonical order.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from ..domain import constants as C
from ..domain.models import Check, Report
from ..logging import get_logger
from .rules import RuleContext, RuleEngine

LOG = get_logger("preflight-enforce")

BLANK_SUMMARY = (
    "No label evidence was provided, so nothing could be verified. "
    "Every check is marked missing; upload the label image or PDF and resubmit."
)


def _union(*groups: Iterable[str]) -> List[str]:
    out: List[str] = []
    for group in groups:
        for s in group:
            if s and s not in out:
                out.append(s)
    return out[: C.MAX_SOURCES]


def _bullets(parts: Iterable[str]) -> str:
    distinct: List[str] = []
    for p in parts:
        p = (p or "").strip()
        if p and p not in distinct:
            distinct.append(p)
    if len(distinct) <= 1:
        return distinct[0] if distinct else ""
    return "\n".join(f"• {p}" for p in distinct)


def _max_severity(checks: List[Check]) -> str:
    pool = [c for c in checks if not c.is_ok] or checks
    return max((c.severity for c in pool), key=lambda s: C.SEVERITY_RANK.get(s, 0))


def fold(checks: List[Check]) -> Check:
    """Fold several checks describing the same item into one."""
    if len(checks) == 1:
        return checks[0]
    statuses = {c.status for c in checks}
    if statuses == {C.STATUS_OK}:
        status = C.STATUS_OK
    elif C.STATUS_MISSING in statuses:
        status = C.STATUS_MISSING
    else:
        status = C.STATUS_ISSUE
    first = checks[0]
    return Check(
        id=first.id,
        title=first.title,
        status=status,
        severity=_max_severity(checks),
        detail=_bullets(c.detail for c in checks),
        fix="" if status == C.STATUS_OK else _bullets(c.fix for c in checks if not c.is_ok),
        sources=_union(*(c.sources for c in checks)),
    )


def fold_by(checks: Iterable[Check], key: Callable[[Check], str]) -> Dict[str, Check]:
    """Single pass into a map keyed by `key`; insertion order follows first sighting."""
    groups: Dict[str, List[Check]] = {}
    for check in checks:
        groups.setdefault(key(check), []).append(check)
    folded = {}
    for k, group in groups.items():
        if len(group) > 1:
            LOG.debug("Folding %d checks for %s", len(group), k)
        folded[k] = fold(group)
    return folded


def apply_preferred(current: Optional[Check], preferred: Check) -> Check:
    """Combine a folded model check with the rule-derived preferred check."""
    if current is None:
        return preferred
    if not preferred.is_ok:
        if current.is_ok:
            LOG.info("Rule overrides optimistic model result for %s: %s/%s", preferred.id, preferred.status, preferred.severity)
        return Check(
            id=preferred.id,
            title=preferred.title,
            status=preferred.status,
            severity=preferred.severity,
            detail=preferred.detail,
            fix=preferred.fix,
            sources=_union(preferred.sources, current.sources),
        )
    if current.is_ok:
        return Check(
            id=preferred.id,
            title=preferred.title,
            status=C.STATUS_OK,
            severity=current.severity,
            detail=_bullets([current.detail, preferred.detail]),
            fix="",
            sources=_union(current.sources, preferred.sources),
        )
    # rule says ok but the model found a problem; the finding stands
    return current


def blank_checks() -> List[Check]:
    checks = []
    for entry in C.CANONICAL_CHECKS:
        severity = C.SEVERITY_HIGH if entry.id == C.QUID else C.SEVERITY_MEDIUM
        checks.append(
            Check.canonical(
                entry.id,
                status=C.STATUS_MISSING,
                severity=severity,
                detail="No label evidence provided.",
                fix="Upload the label image or PDF so this item can be checked.",
            )
        )
    return checks


class Enforcer:
    """Applies the rule engine and merge policy to a normalized report, in place."""

    def __init__(self, engine: Optional[RuleEngine] = None) -> None:
        self.engine = engine or RuleEngine()

    def enforce(self, report: Report, ctx: RuleContext, *, blank: bool = False) -> Report:
        if blank:
            LOG.warning("Blank evidence: forcing all checks to missing")
            report.checks = blank_checks()
            report.summary = BLANK_SUMMARY
            return report

        canonical = [c for c in report.checks if c.id in C.CANONICAL_BY_ID]
        dropped = len(report.checks) - len(canonical)
        if dropped:
            LOG.debug("Dropping %d non-canonical model check(s)", dropped)

        folded = fold_by(canonical, key=lambda c: c.id)
        preferred = self.engine.evaluate(ctx)
        report.checks = [apply_preferred(folded.get(check_id), preferred[check_id]) for check_id in C.CANONICAL_IDS]

        open_items = sum(1 for c in report.checks if not c.is_ok)
        LOG.info("Enforcement complete: %d/%d checks open", open_items, len(report.checks))
        if not report.summary:
            report.summary = f"{open_items} of {len(report.checks)} label requirements need attention."
        return report
