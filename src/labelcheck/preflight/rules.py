"""Deterministic detection rules for the canonical EU checks.

Each rule reads only the label evidence (label PDF text, TDS text and the
model's label transcription) plus the caller's product fields, and returns
the preferred Check for its id. The enforcement stage decides how that
preferred value is merged with the model's answer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from ..domain import constants as C
from ..domain.models import Check
from ..domain.tables import DEFAULT_TABLES, RuleTables
from ..logging import get_logger
from .request import ProductFields

LOG = get_logger("preflight-rules")

QUID_WINDOW = 40
ADDRESS_WINDOW = 160

_PERCENT_RE = re.compile(r"\d+(?:[.,]\d+)?\s?%")
_QUANTITY_RE = re.compile(r"(?<![\w.,])(\d+(?:[.,]\d+)?)\s?(kg|mg|g|ml|cl|dl|l)(?!\w)", re.IGNORECASE)
_ESTIMATED_SIGN_RE = re.compile(r"\d\s?(?:kg|g|ml|cl|l)?\s?℮|℮\s?\d", re.IGNORECASE)
_REFERENCE_AMOUNT_RE = re.compile(r"(?:(?<!\w)(?:per|pro|für|pour|por)\s*|/\s*)$", re.IGNORECASE)
_PER_100_RE = re.compile(r"(?:per|pro|pour|por|/)\s*100\s?(?:g|ml)(?!\w)", re.IGNORECASE)
_POSTAL_RE = re.compile(r"(?<!\d)(?:[A-Z]{1,2}-)?\d{4,5}(?!\d)\s+[A-ZÀ-Ý][\wÀ-ÿ'-]+")
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*|__(.+?)__|<(?:b|strong)>(.+?)</(?:b|strong)>", re.IGNORECASE | re.DOTALL)
_TOKEN_RE = re.compile(r"[^\W\d_]+", re.UNICODE)
_LANG_CODE_RE = re.compile(r"^([a-z]{2})(?:[-_][a-z]{2})?$")


def alternation(terms: Iterable[str]) -> str:
    ordered = sorted({t.strip().lower() for t in terms if t.strip()}, key=len, reverse=True)
    return "|".join(re.escape(t) for t in ordered)


def prefix_pattern(terms: Iterable[str]) -> Pattern[str]:
    """Terms matched at a word start (headers, phrases)."""
    return re.compile(r"(?<!\w)(?:" + alternation(terms) + ")", re.IGNORECASE)


def stem_pattern(terms: Iterable[str], suffix: int = 3) -> Pattern[str]:
    """Terms or stems allowed up to `suffix` extra word characters (plurals, inflections)."""
    return re.compile(r"(?<!\w)(?:" + alternation(terms) + r")\w{0," + str(suffix) + r"}(?!\w)", re.IGNORECASE)


def word_pattern(terms: Iterable[str]) -> Pattern[str]:
    return re.compile(r"(?<!\w)(?:" + alternation(terms) + r")(?!\w)", re.IGNORECASE)


def numbered_street_pattern(terms: Iterable[str]) -> Pattern[str]:
    """Street words accepted only with a house number: "12 Market Place", "Route de Lyon 4"."""
    words = alternation(terms)
    return re.compile(
        r"(?<![\w.,])\d{1,4}[a-z]?,?\s+(?:[^\W\d_][\w'-]*\s+){0,3}(?:" + words + r")(?!\w)"
        r"|(?<!\w)(?:" + words + r")\s+(?:[^\W\d_][\w'-]*\s+){0,3}\d{1,4}[a-z]?(?![\w%]|[.,]\d)",
        re.IGNORECASE,
    )


def _found(pattern: Pattern[str], text: str, limit: int = 3) -> List[str]:
    seen: List[str] = []
    for m in pattern.finditer(text):
        hit = m.group(0).strip()
        if hit.lower() not in (s.lower() for s in seen):
            seen.append(hit)
        if len(seen) >= limit:
            break
    return seen


def _quote(hits: Sequence[str]) -> str:
    return ", ".join(f'"{h}"' for h in hits)


@dataclass(frozen=True)
class RuleContext:
    """What the rules may look at: caller fields and the label evidence texts."""

    fields: ProductFields
    texts: Tuple[str, ...] = ()

    @classmethod
    def build(cls, fields: ProductFields, texts: Iterable[Optional[str]]) -> "RuleContext":
        return cls(fields=fields, texts=tuple(t for t in texts if t and t.strip()))

    @property
    def joined(self) -> str:
        return "\n\n".join(self.texts)


class RuleEngine:
    """Evaluates every canonical EU check against a RuleContext."""

    def __init__(self, tables: RuleTables = DEFAULT_TABLES) -> None:
        self.tables = tables
        self._ingredients = prefix_pattern(tables.ingredient_headers)
        self._allergens = stem_pattern(tables.allergen_terms)
        self._dates = prefix_pattern(tables.date_terms)
        self._storage = prefix_pattern(tables.storage_terms)
        self._nutrition = prefix_pattern(tables.nutrition_terms)
        self._claims = prefix_pattern(tables.claim_terms)
        self._company = word_pattern(tables.company_forms)
        self._street = word_pattern(tables.street_terms)
        self._numbered_street = numbered_street_pattern(tables.numbered_street_terms)
        self._cues = {code: prefix_pattern(cues) for code, cues in tables.language_cues.items()}
        self._rules: Dict[str, Callable[[RuleContext], Check]] = {
            C.LANGUAGE_COMPLIANCE: self.language_compliance,
            C.SALES_NAME: self.sales_name,
            C.INGREDIENT_LIST: self.ingredient_list,
            C.ALLERGEN_EMPHASIS: self.allergen_emphasis,
            C.QUID: self.quid,
            C.NET_QUANTITY: self.net_quantity,
            C.DATE_MARKING: self.date_marking,
            C.STORAGE_USE: self.storage_use,
            C.BUSINESS_ADDRESS: self.business_address,
            C.NUTRITION_DECLARATION: self.nutrition_declaration,
            C.CLAIMS: self.claims,
        }

    def evaluate(self, ctx: RuleContext) -> Dict[str, Check]:
        results = {check_id: self._rules[check_id](ctx) for check_id in C.CANONICAL_IDS}
        LOG.debug(
            "Rule results: %s",
            {k: f"{v.status}/{v.severity}" for k, v in results.items()},
        )
        return results

    # ---------- helpers ----------
    @staticmethod
    def _ok(check_id: str, detail: str) -> Check:
        return Check.canonical(check_id, status=C.STATUS_OK, severity=C.SEVERITY_LOW, detail=detail)

    @staticmethod
    def _fail(check_id: str, status: str, severity: str, detail: str, fix: str) -> Check:
        return Check.canonical(check_id, status=status, severity=severity, detail=detail, fix=fix)

    def name_stem(self, product_name: str) -> Optional[str]:
        """Stem of the first meaningful product-name token, or None."""
        for token in _TOKEN_RE.findall(product_name.lower()):
            if len(token) < 3 or token in self.tables.name_stopwords:
                continue
            if len(token) > 5:
                return token[: max(4, len(token) - 3)]
            return token
        return None

    def normalize_language(self, value: str) -> Optional[str]:
        v = value.strip().lower()
        if not v:
            return None
        if v in self.tables.language_aliases:
            return self.tables.language_aliases[v]
        m = _LANG_CODE_RE.match(v)
        if m:
            return m.group(1)
        return None

    def detected_languages(self, text: str) -> Set[str]:
        return {code for code, pattern in self._cues.items() if pattern.search(text)}

    # ---------- rules ----------
    def sales_name(self, ctx: RuleContext) -> Check:
        name = ctx.fields.product_name
        if not name:
            return self._fail(
                C.SALES_NAME, C.STATUS_MISSING, C.SEVERITY_MEDIUM,
                "No product name was supplied.",
                "State the legal or customary name of the food on the label.",
            )
        return self._ok(C.SALES_NAME, f'Product name supplied: "{name}".')

    def ingredient_list(self, ctx: RuleContext) -> Check:
        hits = _found(self._ingredients, ctx.joined, limit=1)
        if hits:
            return self._ok(C.INGREDIENT_LIST, f"Ingredient list header found: {_quote(hits)}.")
        return self._fail(
            C.INGREDIENT_LIST, C.STATUS_MISSING, C.SEVERITY_MEDIUM,
            "No ingredient list header found in the label evidence.",
            'Add an ingredient list headed "Ingredients" in the language of the country of sale.',
        )

    def _has_emphasized_allergen(self, text: str) -> bool:
        for m in _BOLD_RE.finditer(text):
            segment = next(g for g in m.groups() if g is not None)
            if self._allergens.search(segment):
                return True
        for m in self._allergens.finditer(text):
            word = m.group(0)
            if len(word) >= 3 and word.isupper():
                return True
        return False

    def allergen_emphasis(self, ctx: RuleContext) -> Check:
        text = ctx.joined
        allergens = _found(self._allergens, text)
        has_list = bool(self._ingredients.search(text))
        if not allergens:
            if not has_list:
                return self._fail(
                    C.ALLERGEN_EMPHASIS, C.STATUS_MISSING, C.SEVERITY_LOW,
                    "No ingredient list and no Annex II allergen found; emphasis cannot be verified.",
                    "Provide the ingredient list with Annex II allergens emphasised (e.g. bold).",
                )
            return self._ok(C.ALLERGEN_EMPHASIS, "No Annex II allergen detected in the ingredient list.")
        if self._has_emphasized_allergen(text):
            return self._ok(C.ALLERGEN_EMPHASIS, f"Allergens {_quote(allergens)} are emphasised.")
        return self._fail(
            C.ALLERGEN_EMPHASIS, C.STATUS_ISSUE, C.SEVERITY_MEDIUM,
            f"Allergens {_quote(allergens)} found without emphasis (no bold or capitals).",
            "Emphasise every Annex II allergen in the ingredient list, e.g. in bold type.",
        )

    def _percent_near(self, stem: str, text: str) -> Optional[str]:
        pattern = re.compile(r"(?<!\w)" + re.escape(stem) + r"\w*", re.IGNORECASE)
        for m in pattern.finditer(text):
            before = text[max(0, m.start() - QUID_WINDOW): m.start()]
            after = text[m.end(): m.end() + QUID_WINDOW]
            pct = _PERCENT_RE.search(after) or _last(_PERCENT_RE, before)
            if pct:
                return f"{m.group(0)} {pct.group(0)}"
        return None

    def quid(self, ctx: RuleContext) -> Check:
        stem = self.name_stem(ctx.fields.product_name)
        if stem is None:
            return self._fail(
                C.QUID, C.STATUS_ISSUE, C.SEVERITY_HIGH,
                "No characterising ingredient could be derived from the product name.",
                "Declare the percentage of any ingredient named or pictured on the label.",
            )
        for text in (ctx.joined,) + ctx.texts:
            hit = self._percent_near(stem, text)
            if hit:
                return self._ok(C.QUID, f'Percentage declared near the characterising ingredient: "{hit}".')
        return self._fail(
            C.QUID, C.STATUS_ISSUE, C.SEVERITY_HIGH,
            f'No percentage found next to the characterising ingredient "{stem}…".',
            "State the quantity of the characterising ingredient as a percentage in the ingredient list or next to the name.",
        )

    def net_quantity(self, ctx: RuleContext) -> Check:
        text = ctx.joined
        estimated = _ESTIMATED_SIGN_RE.search(text)
        if estimated:
            return self._ok(C.NET_QUANTITY, f'Net quantity with estimated sign: "{estimated.group(0)}".')
        for m in _QUANTITY_RE.finditer(text):
            if _REFERENCE_AMOUNT_RE.search(text[max(0, m.start() - 8): m.start()]):
                continue
            return self._ok(C.NET_QUANTITY, f'Net quantity found: "{m.group(0)}".')
        return self._fail(
            C.NET_QUANTITY, C.STATUS_MISSING, C.SEVERITY_MEDIUM,
            "No net quantity with a legal unit (g, kg, ml, l) found.",
            "Declare the net quantity in metric units (e.g. 200 g) in the same field of vision as the name.",
        )

    def date_marking(self, ctx: RuleContext) -> Check:
        hits = _found(self._dates, ctx.joined, limit=1)
        if hits:
            return self._ok(C.DATE_MARKING, f"Date marking found: {_quote(hits)}.")
        return self._fail(
            C.DATE_MARKING, C.STATUS_MISSING, C.SEVERITY_LOW,
            'No "best before" or "use by" statement found.',
            'Add "Best before" (or "Use by" for perishable foods) followed by the date or where to find it.',
        )

    def storage_use(self, ctx: RuleContext) -> Check:
        hits = _found(self._storage, ctx.joined, limit=1)
        if hits:
            return self._ok(C.STORAGE_USE, f"Storage/use instruction found: {_quote(hits)}.")
        return self._fail(
            C.STORAGE_USE, C.STATUS_MISSING, C.SEVERITY_LOW,
            "No storage or use conditions found.",
            'Add storage conditions (e.g. "Store in a cool, dry place") and conditions after opening where relevant.',
        )

    def _company_spans(self, ctx: RuleContext, text: str) -> List[Tuple[int, int]]:
        spans = [(m.start(), m.end()) for m in self._company.finditer(text)]
        company = ctx.fields.company_name
        if company:
            spans.extend((m.start(), m.end()) for m in re.finditer(re.escape(company), text, re.IGNORECASE))
        return sorted(spans)

    def _has_address(self, text: str) -> bool:
        return bool(
            self._street.search(text) or self._numbered_street.search(text) or _POSTAL_RE.search(text)
        )

    def business_address(self, ctx: RuleContext) -> Check:
        text = ctx.joined
        spans = self._company_spans(ctx, text)
        for start, end in spans:
            window = text[max(0, start - ADDRESS_WINDOW): end + ADDRESS_WINDOW]
            if self._has_address(window):
                return self._ok(
                    C.BUSINESS_ADDRESS,
                    f'Business name with postal address found near "{text[start:end]}".',
                )
        if spans:
            return self._fail(
                C.BUSINESS_ADDRESS, C.STATUS_ISSUE, C.SEVERITY_LOW,
                "A business name was found but no postal address next to it.",
                "Print the full EU postal address of the food business operator next to its name.",
            )
        if self._has_address(text):
            return self._fail(
                C.BUSINESS_ADDRESS, C.STATUS_ISSUE, C.SEVERITY_LOW,
                "An address was found but no identifiable business name next to it.",
                "Print the registered business name next to the EU postal address.",
            )
        return self._fail(
            C.BUSINESS_ADDRESS, C.STATUS_MISSING, C.SEVERITY_LOW,
            "No business name or EU postal address found.",
            "Add the name and EU postal address of the food business operator responsible for the label.",
        )

    def nutrition_declaration(self, ctx: RuleContext) -> Check:
        text = ctx.joined
        hits = _found(self._nutrition, text, limit=1)
        per_100 = _PER_100_RE.search(text)
        if hits or per_100:
            found = hits[0] if hits else per_100.group(0)
            return self._ok(C.NUTRITION_DECLARATION, f'Nutrition declaration found: "{found}".')
        return self._fail(
            C.NUTRITION_DECLARATION, C.STATUS_MISSING, C.SEVERITY_MEDIUM,
            "No nutrition declaration found.",
            "Add the mandatory nutrition table per 100 g/ml (energy, fat, saturates, carbohydrate, sugars, protein, salt).",
        )

    def language_compliance(self, ctx: RuleContext) -> Check:
        declared = {code for code in (self.normalize_language(v) for v in ctx.fields.languages_provided) if code}
        detected = self.detected_languages(ctx.joined)
        languages = declared | detected
        if not languages:
            return self._fail(
                C.LANGUAGE_COMPLIANCE, C.STATUS_MISSING, C.SEVERITY_MEDIUM,
                "No label language was declared or detected.",
                "Declare the label languages and make sure they include an official language of the country of sale.",
            )

        country = ctx.fields.country_of_sale.strip().lower()
        accepted = self.tables.country_languages.get(country)
        if not accepted:
            return self._fail(
                C.LANGUAGE_COMPLIANCE, C.STATUS_ISSUE, C.SEVERITY_LOW,
                f"Country of sale {ctx.fields.country_of_sale or '(none)'} is not recognised; "
                f"label languages: {', '.join(sorted(languages))}.",
                "Provide the EU country of sale so the required label language can be verified.",
            )
        overlap = languages.intersection(accepted)
        if overlap:
            return self._ok(
                C.LANGUAGE_COMPLIANCE,
                f"Label language(s) {', '.join(sorted(overlap))} accepted for {ctx.fields.country_of_sale}.",
            )
        return self._fail(
            C.LANGUAGE_COMPLIANCE, C.STATUS_ISSUE, C.SEVERITY_MEDIUM,
            f"Label language(s) {', '.join(sorted(languages))} do not include "
            f"{' or '.join(accepted)} required for {ctx.fields.country_of_sale}.",
            f"Provide all mandatory particulars in {' or '.join(accepted)}.",
        )

    def claims(self, ctx: RuleContext) -> Check:
        hits = _found(self._claims, ctx.joined)
        if hits:
            return self._fail(
                C.CLAIMS, C.STATUS_ISSUE, C.SEVERITY_MEDIUM,
                f"Nutrition/health claim wording found: {_quote(hits)}.",
                "Check each claim against the authorised wording and conditions of EC 1924/2006 and keep substantiation on file.",
            )
        return self._ok(C.CLAIMS, "No nutrition or health claims detected.")


def _last(pattern: Pattern[str], text: str):
    match = None
    for match in pattern.finditer(text):
        pass
    return match
