from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Pattern, Tuple

# Check status values. There is no "unknown": ambiguity resolves to issue/missing.
STATUS_OK = "ok"
STATUS_ISSUE = "issue"
STATUS_MISSING = "missing"

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_RANK: Dict[str, int] = {SEVERITY_LOW: 1, SEVERITY_MEDIUM: 2, SEVERITY_HIGH: 3}

OVERALL_PASS = "pass"
OVERALL_CAUTION = "caution"
OVERALL_FAIL = "fail"

MAX_SOURCES = 3
REPORT_VERSION = "1.0"

# Check ids of the EU 1169/2011 profile, in report order.
LANGUAGE_COMPLIANCE = "language_compliance"
SALES_NAME = "sales_name"
INGREDIENT_LIST = "ingredient_list"
ALLERGEN_EMPHASIS = "allergen_emphasis"
QUID = "quid"
NET_QUANTITY = "net_quantity"
DATE_MARKING = "date_marking"
STORAGE_USE = "storage_use"
BUSINESS_ADDRESS = "business_address"
NUTRITION_DECLARATION = "nutrition_declaration"
CLAIMS = "claims"


@dataclass(frozen=True)
class CanonicalCheck:
    id: str
    title: str
    aliases: Tuple[str, ...]
    sources: Tuple[str, ...]
    missing_severity: str


CANONICAL_CHECKS: Tuple[CanonicalCheck, ...] = (
    CanonicalCheck(
        LANGUAGE_COMPLIANCE,
        "Language compliance",
        ("language",),
        ("EU 1169/2011 Art. 15",),
        SEVERITY_MEDIUM,
    ),
    CanonicalCheck(
        SALES_NAME,
        "Sales name",
        ("sales name", "name of the food", "product name", "legal name", "denomination", "food name"),
        ("EU 1169/2011 Art. 17",),
        SEVERITY_MEDIUM,
    ),
    CanonicalCheck(
        INGREDIENT_LIST,
        "Ingredient list",
        ("ingredient",),
        ("EU 1169/2011 Art. 18",),
        SEVERITY_MEDIUM,
    ),
    CanonicalCheck(
        ALLERGEN_EMPHASIS,
        "Allergen emphasis",
        ("allergen",),
        ("EU 1169/2011 Art. 21", "EU 1169/2011 Annex II"),
        SEVERITY_MEDIUM,
    ),
    CanonicalCheck(
        QUID,
        "QUID",
        ("quid", "quantitative ingredient", "ingredient percentage"),
        ("EU 1169/2011 Art. 22", "EU 1169/2011 Annex VIII"),
        SEVERITY_HIGH,
    ),
    CanonicalCheck(
        NET_QUANTITY,
        "Net quantity",
        ("net quantity", "net qty", "net weight", "net contents", "quantity"),
        ("EU 1169/2011 Art. 23", "EU 1169/2011 Annex IX"),
        SEVERITY_MEDIUM,
    ),
    CanonicalCheck(
        DATE_MARKING,
        "Date marking",
        ("date", "best before", "use by", "durability"),
        ("EU 1169/2011 Art. 24", "EU 1169/2011 Annex X"),
        SEVERITY_LOW,
    ),
    CanonicalCheck(
        STORAGE_USE,
        "Storage/use conditions",
        ("storage", "conditions of use", "instructions for use", "use instructions"),
        ("EU 1169/2011 Art. 25", "EU 1169/2011 Art. 27"),
        SEVERITY_LOW,
    ),
    CanonicalCheck(
        BUSINESS_ADDRESS,
        "Business name & EU address",
        ("business", "address", "operator", "manufacturer"),
        ("EU 1169/2011 Art. 8", "EU 1169/2011 Art. 9(1)(h)"),
        SEVERITY_LOW,
    ),
    CanonicalCheck(
        NUTRITION_DECLARATION,
        "Nutrition declaration",
        ("nutrition", "nutritional"),
        ("EU 1169/2011 Art. 30", "EU 1169/2011 Annex XV"),
        SEVERITY_MEDIUM,
    ),
    CanonicalCheck(
        CLAIMS,
        "Claims",
        ("claim",),
        ("EC 1924/2006",),
        SEVERITY_MEDIUM,
    ),
)

CANONICAL_BY_ID: Dict[str, CanonicalCheck] = {c.id: c for c in CANONICAL_CHECKS}
CANONICAL_IDS: Tuple[str, ...] = tuple(c.id for c in CANONICAL_CHECKS)

# Title matching order: more specific vocabularies first so that a title such
# as "Quantitative ingredient declaration" lands on QUID, not Ingredient list.
_MATCH_ORDER: Tuple[str, ...] = (
    QUID,
    ALLERGEN_EMPHASIS,
    CLAIMS,
    NUTRITION_DECLARATION,
    NET_QUANTITY,
    DATE_MARKING,
    STORAGE_USE,
    BUSINESS_ADDRESS,
    LANGUAGE_COMPLIANCE,
    SALES_NAME,
    INGREDIENT_LIST,
)

_ALIAS_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
    (
        check_id,
        re.compile(
            r"(?<![a-z])(?:" + "|".join(re.escape(a) for a in CANONICAL_BY_ID[check_id].aliases) + ")"
        ),
    )
    for check_id in _MATCH_ORDER
)


def match_canonical_id(*labels: Optional[str]) -> Optional[str]:
    """Map a model-emitted id/title onto a canonical check id (or None).

    Exact ids win; otherwise the first alias found (case-insensitive) decides.
    """
    texts = []
    for label in labels:
        if not isinstance(label, str) or not label.strip():
            continue
        text = label.strip().lower()
        if text in CANONICAL_BY_ID:
            return text
        texts.append(text.replace("_", " "))
    for text in texts:
        for check_id, pattern in _ALIAS_PATTERNS:
            if pattern.search(text):
                return check_id
    return None
