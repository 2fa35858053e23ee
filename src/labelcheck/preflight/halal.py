"""Optional Halal pre-audit: model findings plus a deterministic ingredient scan.

Halal checks are an open set keyed by a normalized title. They are reported
next to the EU checks but never feed the score.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Pattern

from ..domain import constants as C
from ..domain.models import Check
from ..domain.tables import DEFAULT_TABLES, RuleTables
from ..logging import get_logger
from .enforce import apply_preferred, fold_by
from .evidence import EvidenceBundle
from .jsonparse import ParseSuccess
from .model import ModelClient, build_halal_messages
from .normalize import coerce_checks, slugify_title
from .rules import RuleContext, alternation, stem_pattern

LOG = get_logger("preflight-halal")

HALAL_SOURCE = "halal_guidelines.md"
QUALIFIER_WINDOW = 40

PORK = "pork"
ALCOHOL = "alcohol"
GELATIN = "gelatin"
ADDITIVES = "additives"
CERTIFICATION = "certification"

HALAL_TITLES: Dict[str, str] = {
    PORK: "Pork-derived ingredients",
    ALCOHOL: "Alcohol",
    GELATIN: "Gelatin source",
    ADDITIVES: "Doubtful additives",
    CERTIFICATION: "Halal certification mark",
}

# Title keywords -> fixed halal key, checked in order.
_TITLE_KEYS = (
    (PORK, re.compile(r"pork|porcine|swine|pig|lard")),
    (ALCOHOL, re.compile(r"alcohol|ethanol|wine|liquor")),
    (GELATIN, re.compile(r"gelatin")),
    (ADDITIVES, re.compile(r"additive|e-?number|e\d{3}|colou?r|emulsifier")),
    (CERTIFICATION, re.compile(r"certif|logo|mark|label")),
)


def halal_key(title: str) -> str:
    t = title.lower()
    for key, pattern in _TITLE_KEYS:
        if pattern.search(t):
            return key
    return slugify_title(title)


def _plural_pattern(terms) -> Pattern[str]:
    return re.compile(r"(?<!\w)(?:" + alternation(terms) + r")(?:s|es)?(?!\w)", re.IGNORECASE)


class HalalScanner:
    """Deterministic preferred values for the fixed Halal checks."""

    def __init__(self, tables: RuleTables = DEFAULT_TABLES) -> None:
        self.tables = tables
        self._pork = _plural_pattern(tables.pork_terms)
        self._alcohol = _plural_pattern(tables.alcohol_terms)
        self._gelatin = stem_pattern(tables.gelatin_terms, suffix=1)
        self._qualifiers = re.compile(
            r"(?<!\w)(?:" + alternation(tables.halal_qualifiers) + r"|bovine|beef|fish)(?!\w)", re.IGNORECASE
        )
        self._additives = re.compile(r"(?<!\w)(?:" + alternation(tables.doubtful_additives) + r")(?!\w)", re.IGNORECASE)
        self._halal = re.compile(r"(?<!\w)halal(?!\w)", re.IGNORECASE)

    @staticmethod
    def _check(key: str, status: str, severity: str, detail: str, fix: str = "") -> Check:
        return Check(
            id=key,
            title=HALAL_TITLES[key],
            status=status,
            severity=severity,
            detail=detail,
            fix="" if status == C.STATUS_OK else fix,
            sources=[HALAL_SOURCE],
        )

    @staticmethod
    def _hits(pattern: Pattern[str], text: str) -> List[str]:
        out: List[str] = []
        for m in pattern.finditer(text):
            if m.group(0).lower() not in (h.lower() for h in out):
                out.append(m.group(0))
        return out[:3]

    def scan(self, text: str) -> Dict[str, Check]:
        results: Dict[str, Check] = {}
        if not text.strip():
            for key in HALAL_TITLES:
                results[key] = self._check(
                    key, C.STATUS_MISSING, C.SEVERITY_MEDIUM,
                    "No label text available to verify this item.",
                    "Provide the full ingredient list so this item can be assessed.",
                )
            return results

        pork = self._hits(self._pork, text)
        if pork:
            results[PORK] = self._check(
                PORK, C.STATUS_ISSUE, C.SEVERITY_HIGH,
                f"Pork-derived ingredient(s) found: {', '.join(pork)}.",
                "Remove or replace pork-derived ingredients; the product cannot be certified Halal otherwise.",
            )
        else:
            results[PORK] = self._check(PORK, C.STATUS_OK, C.SEVERITY_LOW, "No pork-derived ingredient detected.")

        alcohol = self._hits(self._alcohol, text)
        if alcohol:
            results[ALCOHOL] = self._check(
                ALCOHOL, C.STATUS_ISSUE, C.SEVERITY_HIGH,
                f"Alcohol or alcoholic ingredient(s) found: {', '.join(alcohol)}.",
                "Remove alcoholic ingredients or document that no alcohol remains and the source is permissible.",
            )
        else:
            results[ALCOHOL] = self._check(ALCOHOL, C.STATUS_OK, C.SEVERITY_LOW, "No alcohol detected.")

        results[GELATIN] = self._gelatin_check(text)

        additives = self._hits(self._additives, text)
        if additives:
            results[ADDITIVES] = self._check(
                ADDITIVES, C.STATUS_ISSUE, C.SEVERITY_MEDIUM,
                f"Additive(s) of doubtful origin found: {', '.join(additives)}.",
                "Obtain supplier declarations confirming a Halal (non-animal or Halal-slaughtered) source.",
            )
        else:
            results[ADDITIVES] = self._check(ADDITIVES, C.STATUS_OK, C.SEVERITY_LOW, "No doubtful additives detected.")

        if self._halal.search(text):
            results[CERTIFICATION] = self._check(
                CERTIFICATION, C.STATUS_OK, C.SEVERITY_LOW, "Halal wording or mark referenced on the label."
            )
        else:
            results[CERTIFICATION] = self._check(
                CERTIFICATION, C.STATUS_MISSING, C.SEVERITY_LOW,
                "No Halal certification mark found.",
                "Apply the logo of a recognised Halal certification body once certified.",
            )
        return results

    def _gelatin_check(self, text: str) -> Check:
        unqualified = []
        for m in self._gelatin.finditer(text):
            window = text[max(0, m.start() - QUALIFIER_WINDOW): m.end() + QUALIFIER_WINDOW]
            if not self._qualifiers.search(window):
                unqualified.append(m.group(0))
        if unqualified:
            return self._check(
                GELATIN, C.STATUS_ISSUE, C.SEVERITY_MEDIUM,
                f"Gelatin of unspecified origin: {', '.join(unqualified[:3])}.",
                "Specify the gelatin source (Halal bovine or fish) and hold a Halal certificate for it.",
            )
        if self._gelatin.search(text):
            return self._check(GELATIN, C.STATUS_OK, C.SEVERITY_LOW, "Gelatin source is qualified (Halal, bovine or fish).")
        return self._check(GELATIN, C.STATUS_OK, C.SEVERITY_LOW, "No gelatin detected.")


class HalalAuditor:
    def __init__(self, client: Optional[ModelClient], scanner: Optional[HalalScanner] = None) -> None:
        self.client = client
        self.scanner = scanner or HalalScanner()

    def _model_checks(self, bundle: EvidenceBundle, label_text: str) -> List[Check]:
        if self.client is None or bundle.is_blank:
            return []
        result = self.client.complete_json(build_halal_messages(bundle, label_text), expect=None, purpose="halal")
        if not isinstance(result, ParseSuccess):
            LOG.warning("Halal model call gave no usable answer: %s", result.reason)
            return []
        value: Any = result.value
        items = value.get("checks") if isinstance(value, dict) else value
        return coerce_checks(items, resolve_canonical=False)

    def audit(
        self,
        bundle: EvidenceBundle,
        ctx: RuleContext,
        label_text: str = "",
        *,
        use_model: bool = True,
    ) -> List[Check]:
        model_checks = self._model_checks(bundle, label_text) if use_model else []
        folded = fold_by(model_checks, key=lambda c: halal_key(c.title))
        preferred = self.scanner.scan(ctx.joined)

        checks: List[Check] = []
        for key, check in preferred.items():
            merged = apply_preferred(folded.pop(key, None), check)
            merged.id = key
            merged.title = HALAL_TITLES[key]
            checks.append(merged)
        for key, check in folded.items():
            check.id = key
            checks.append(check)
        LOG.info("Halal pre-audit: %d check(s), %d open", len(checks), sum(1 for c in checks if not c.is_ok))
        return checks
