"""Turn untrusted model JSON into domain objects."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from ..domain.constants import (
    CANONICAL_BY_ID,
    MAX_SOURCES,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    STATUS_ISSUE,
    STATUS_MISSING,
    STATUS_OK,
    match_canonical_id,
)
from ..domain.models import Check, ProductInfo, Report
from ..logging import get_logger
from .request import ProductFields

LOG = get_logger("preflight-normalize")

_OK_WORDS = {"ok", "pass", "passed", "compliant", "present", "yes", "good"}
_MISSING_WORDS = {"missing", "absent", "not found", "not present", "none", "not provided"}
_HIGH_WORDS = {"high", "critical", "major", "severe"}
_LOW_WORDS = {"low", "minor", "info", "informational"}


def normalize_status(value: Any) -> str:
    """ok/missing vocabulary maps explicitly; everything else is an issue."""
    v = str(value or "").strip().lower().replace("_", " ")
    if v in _OK_WORDS:
        return STATUS_OK
    if v in _MISSING_WORDS:
        return STATUS_MISSING
    return STATUS_ISSUE


def normalize_severity(value: Any) -> str:
    v = str(value or "").strip().lower()
    if v in _HIGH_WORDS:
        return SEVERITY_HIGH
    if v in _LOW_WORDS:
        return SEVERITY_LOW
    return SEVERITY_MEDIUM


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return "\n".join(str(v).strip() for v in value if str(v).strip())
    if value is None:
        return ""
    return str(value).strip()


def clean_sources(values: Any) -> List[str]:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple)):
        return []
    out: List[str] = []
    for v in values:
        s = _text(v)
        if s and s not in out:
            out.append(s)
    return out[:MAX_SOURCES]


def slugify_title(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", title.lower()).strip("_") or "check"


def coerce_check(raw: Any, *, resolve_canonical: bool = True) -> Optional[Check]:
    """Build a Check from one model-emitted item; canonical ids are resolved here."""
    if not isinstance(raw, dict):
        return None
    raw_id = _text(raw.get("id"))
    title = _text(raw.get("title") or raw.get("name"))
    if not raw_id and not title:
        return None

    check_id = match_canonical_id(raw_id, title) if resolve_canonical else None
    if check_id is not None:
        title = CANONICAL_BY_ID[check_id].title
    else:
        check_id = slugify_title(raw_id or title)
        title = title or raw_id

    status = normalize_status(raw.get("status"))
    fix = "" if status == STATUS_OK else _text(raw.get("fix"))
    return Check(
        id=check_id,
        title=title,
        status=status,
        severity=normalize_severity(raw.get("severity")),
        detail=_text(raw.get("detail")),
        fix=fix,
        sources=clean_sources(raw.get("sources")),
    )


def coerce_checks(items: Any, *, resolve_canonical: bool = True) -> List[Check]:
    if not isinstance(items, list):
        return []
    checks = []
    for item in items:
        check = coerce_check(item, resolve_canonical=resolve_canonical)
        if check is None:
            LOG.debug("Dropping malformed check entry: %r", item)
            continue
        checks.append(check)
    return checks


class ReportNormalizer:
    """Model answer -> Report. Product fields fall back to the caller's values."""

    def __init__(self, fields: ProductFields) -> None:
        self.fields = fields

    def normalize(self, payload: Dict[str, Any]) -> Report:
        product_raw = payload.get("product") if isinstance(payload.get("product"), dict) else {}
        languages = product_raw.get("languages_provided")
        if isinstance(languages, list):
            languages = [_text(v) for v in languages if _text(v)]
        else:
            languages = []
        product = ProductInfo(
            name=_text(product_raw.get("name")) or self.fields.product_name,
            country_of_sale=_text(product_raw.get("country_of_sale")) or self.fields.country_of_sale,
            languages_provided=languages or list(self.fields.languages_provided),
        )
        checks = coerce_checks(payload.get("checks"))
        LOG.debug("Normalized %d model check(s)", len(checks))
        # score/overall_status are derived later and never read from the model
        return Report(product=product, summary=_text(payload.get("summary")), checks=checks)
