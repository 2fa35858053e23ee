"""Preflight pipeline stages and the orchestrating service."""

from .enforce import Enforcer
from .errors import (
    EvidenceDecodeError,
    ModelCallError,
    PreflightInputError,
    PreflightStageError,
    RenderError,
)
from .evidence import EvidenceAssembler, EvidenceBundle, TextBlock
from .halal import HalalAuditor, HalalScanner
from .jsonparse import ParseFailure, ParseSuccess, recover_json
from .model import ModelClient, OpenAIChatTransport, ReportExtractor
from .request import PreflightRequest, ProductFields
from .rules import RuleContext, RuleEngine
from .scoring import score_checks
from .service import PreflightResult, PreflightService

__all__ = [
    "Enforcer",
    "EvidenceDecodeError",
    "ModelCallError",
    "PreflightInputError",
    "PreflightStageError",
    "RenderError",
    "EvidenceAssembler",
    "EvidenceBundle",
    "TextBlock",
    "HalalAuditor",
    "HalalScanner",
    "ParseFailure",
    "ParseSuccess",
    "recover_json",
    "ModelClient",
    "OpenAIChatTransport",
    "ReportExtractor",
    "PreflightRequest",
    "ProductFields",
    "RuleContext",
    "RuleEngine",
    "score_checks",
    "PreflightResult",
    "PreflightService",
]
