from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .constants import (
    CANONICAL_BY_ID,
    OVERALL_CAUTION,
    REPORT_VERSION,
    SEVERITY_MEDIUM,
    STATUS_MISSING,
    STATUS_OK,
)


@dataclass
class Check:
    """One compliance item of a report."""

    id: str
    title: str
    status: str = STATUS_MISSING
    severity: str = SEVERITY_MEDIUM
    detail: str = ""
    fix: str = ""
    sources: List[str] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return self.status == STATUS_OK

    @classmethod
    def canonical(cls, check_id: str, **values: Any) -> "Check":
        entry = CANONICAL_BY_ID[check_id]
        values.setdefault("sources", list(entry.sources))
        return cls(id=entry.id, title=entry.title, **values)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "severity": self.severity,
            "detail": self.detail,
            "fix": self.fix,
            "sources": list(self.sources),
        }


@dataclass
class ProductInfo:
    name: str = ""
    country_of_sale: str = ""
    languages_provided: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "country_of_sale": self.country_of_sale,
            "languages_provided": list(self.languages_provided),
        }


@dataclass
class Report:
    """Top-level preflight result.

    Built from untrusted model output, mutated by enforcement, then finalized
    by scoring. score and overall_status are never taken from the model.
    """

    product: ProductInfo
    summary: str = ""
    checks: List[Check] = field(default_factory=list)
    score: int = 0
    overall_status: str = OVERALL_CAUTION
    version: str = REPORT_VERSION

    def open_checks(self) -> List[Check]:
        return [c for c in self.checks if not c.is_ok]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "product": self.product.as_dict(),
            "summary": self.summary,
            "checks": [c.as_dict() for c in self.checks],
            "score": self.score,
            "overall_status": self.overall_status,
        }
