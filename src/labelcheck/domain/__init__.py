"""Report data model, canonical EU checks and rule lookup tables."""

from .constants import CANONICAL_CHECKS, CANONICAL_IDS, match_canonical_id
from .models import Check, ProductInfo, Report
from .tables import DEFAULT_TABLES, RuleTables

__all__ = [
    "CANONICAL_CHECKS",
    "CANONICAL_IDS",
    "match_canonical_id",
    "Check",
    "ProductInfo",
    "Report",
    "DEFAULT_TABLES",
    "RuleTables",
]
