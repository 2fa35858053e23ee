"""Orchestrated preflight: assembly -> model -> enforcement -> scoring -> render -> delivery."""

from __future__ import annotations

import asyncio
import base64
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests
from starlette.concurrency import run_in_threadpool

from ..config import ServiceConfig, load_kb_corpus
from ..domain.models import Check, Report
from ..logging import get_logger
from .delivery import ReportMailer, ResendClient
from .enforce import Enforcer
from .errors import PreflightInputError, PreflightStageError
from .evidence import EvidenceAssembler, EvidenceBundle
from .halal import HalalAuditor
from .model import (
    ChatTransport,
    Extraction,
    ModelClient,
    OpenAIChatTransport,
    ReportExtractor,
    minimal_shell_payload,
)
from .normalize import ReportNormalizer
from .render import ReportRenderer, check_plausible, render_fallback, static_pdf
from .request import PreflightRequest
from .rules import RuleContext
from .scoring import finalize

LOG = get_logger("preflight-service")

STAGE_ASSEMBLY = "assembly"
STAGE_MODEL = "model"
STAGE_ENFORCEMENT = "enforcement"
STAGE_SCORING = "scoring"
STAGE_HALAL = "halal"
STAGE_RENDER = "render"
STAGE_DELIVERY = "delivery"


@contextmanager
def stage(name: str) -> Iterator[None]:
    """Tag unexpected failures with the pipeline stage they happened in."""
    try:
        yield
    except (PreflightInputError, PreflightStageError):
        raise
    except Exception as exc:
        LOG.exception("Stage %s failed: %s", name, exc)
        raise PreflightStageError(name, exc) from exc


@dataclass
class PreflightResult:
    report: Report
    halal_audit: bool = False
    halal_checks: List[Check] = field(default_factory=list)
    pdf: Optional[bytes] = None
    pdf_error: Optional[str] = None
    email_status: str = "skipped"
    return_pdf: bool = True
    notes: List[str] = field(default_factory=list)

    def as_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": True,
            "report": self.report.as_dict(),
            "score": self.report.score,
            "halal_audit": self.halal_audit,
            "halal_checks": [c.as_dict() for c in self.halal_checks],
            "email_status": self.email_status,
        }
        if self.return_pdf and self.pdf:
            body["pdf_base64"] = base64.b64encode(self.pdf).decode("ascii")
        if self.pdf_error:
            body["pdf_error"] = self.pdf_error
        if self.notes:
            body["notes"] = list(self.notes)
        return body


class PreflightService:
    """High-level orchestrator that wires the individual pipeline stages.

    Collaborators are passed in so tests can substitute fakes; use
    `from_config` for the production wiring.
    """

    def __init__(
        self,
        *,
        assembler: EvidenceAssembler,
        extractor: ReportExtractor,
        enforcer: Optional[Enforcer] = None,
        halal: Optional[HalalAuditor] = None,
        renderer: Optional[ReportRenderer] = None,
        mailer: Optional[ReportMailer] = None,
        model_timeout: float = 90.0,
        parse_timeout: float = 30.0,
        render_timeout: float = 30.0,
        mail_timeout: float = 30.0,
    ) -> None:
        self.assembler = assembler
        self.extractor = extractor
        self.enforcer = enforcer or Enforcer()
        self.halal = halal or HalalAuditor(extractor.client)
        self.renderer = renderer or ReportRenderer()
        self.mailer = mailer or ReportMailer(None)
        self.model_timeout = model_timeout
        self.parse_timeout = parse_timeout
        self.render_timeout = render_timeout
        self.mail_timeout = mail_timeout

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        *,
        transport: Optional[ChatTransport] = None,
        mail_session: Optional[requests.Session] = None,
    ) -> "PreflightService":
        if transport is None and config.openai_api_key:
            transport = OpenAIChatTransport(
                config.openai_api_key,
                base_url=config.openai_base_url,
                timeout=config.model_timeout,
            )
        if transport is None:
            LOG.warning("OPENAI_API_KEY not configured; every report will fall back to the minimal shell")
        client = ModelClient(
            transport,
            model=config.model,
            fallback_model=config.fallback_model,
            attempts=config.model_attempts,
            timeout=config.model_timeout,
        )
        mail_client = None
        if config.resend_api_key:
            mail_client = ResendClient(
                config.resend_api_key,
                sender=config.mail_from,
                timeout=config.mail_timeout,
                session=mail_session,
            )
        service = cls(
            assembler=EvidenceAssembler(load_kb_corpus(config.kb_dir)),
            extractor=ReportExtractor(client),
            halal=HalalAuditor(client),
            mailer=ReportMailer(mail_client),
            # the model budget covers every retry and the fallback model
            model_timeout=config.model_timeout * max(1, config.model_attempts) * len(client.models) + 30,
            parse_timeout=config.parse_timeout,
            render_timeout=config.render_timeout,
            mail_timeout=config.mail_timeout + 5,
        )
        LOG.info("PreflightService ready (model=%s, mail=%s)", config.model, "on" if mail_client else "off")
        return service

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    async def _blocking(fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        call = run_in_threadpool(fn, *args, **kwargs)
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=timeout)

    async def _extract(self, bundle: EvidenceBundle) -> Extraction:
        if bundle.is_blank:
            return Extraction(payload={})
        try:
            return await self._blocking(self.extractor.extract, bundle, timeout=self.model_timeout)
        except asyncio.TimeoutError:
            LOG.error("Model extraction exceeded %.0fs; using minimal shell report", self.model_timeout)
            return Extraction(payload=minimal_shell_payload("model timeout"), degraded_reason="model timeout")
        except Exception as exc:
            reason = f"model extraction failed: {exc}"
            LOG.exception("%s; using minimal shell report", reason)
            return Extraction(payload=minimal_shell_payload(reason), degraded_reason=reason)

    async def _halal(self, bundle: EvidenceBundle, ctx: RuleContext, label_text: str) -> List[Check]:
        try:
            return await self._blocking(self.halal.audit, bundle, ctx, label_text, timeout=self.model_timeout)
        except asyncio.TimeoutError:
            LOG.error("Halal model call exceeded %.0fs; keeping the deterministic scan only", self.model_timeout)
            return self.halal.audit(bundle, ctx, label_text, use_model=False)

    async def _render(self, request: PreflightRequest, result: PreflightResult) -> None:
        product = result.report.product.name or request.fields.product_name
        try:
            pdf = await self._blocking(
                self.renderer.render,
                result.report,
                request.fields,
                halal_checks=result.halal_checks,
                include_halal=request.wants_halal_page,
                timeout=self.render_timeout,
            )
            result.pdf = check_plausible(pdf)
            return
        except asyncio.TimeoutError:
            reason = f"rendering timed out after {self.render_timeout:.0f}s"
        except Exception as exc:
            reason = f"rendering failed: {exc}"
        LOG.error("%s; using fallback document", reason)
        result.pdf_error = reason
        message = "The detailed report could not be rendered. " + reason
        try:
            result.pdf = render_fallback(product, message)
        except Exception as exc:
            LOG.exception("Fallback rendering failed; using static document")
            result.pdf_error = f"{reason}; fallback failed: {exc}"
            result.pdf = static_pdf([f"LabelCheck - {product or '-'}", message])

    async def _deliver(self, request: PreflightRequest, result: PreflightResult) -> None:
        try:
            result.email_status = await self._blocking(
                self.mailer.send_report,
                fields=request.fields,
                report=result.report,
                pdf=result.pdf,
                attach_pdf=request.attach_pdf,
                timeout=self.mail_timeout,
            )
        except asyncio.TimeoutError:
            LOG.error("Email delivery timed out after %.0fs", self.mail_timeout)
            result.email_status = "failed: timeout"
        except Exception as exc:
            LOG.exception("Email delivery failed unexpectedly")
            result.email_status = f"failed: {exc}"

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def run(self, request: PreflightRequest) -> PreflightResult:
        LOG.info("Preflight started for product=%r", request.fields.product_name)

        with stage(STAGE_ASSEMBLY):
            try:
                bundle = await self._blocking(self.assembler.assemble, request, timeout=self.parse_timeout)
            except asyncio.TimeoutError:
                LOG.error("Document parsing exceeded %.0fs", self.parse_timeout)
                raise PreflightStageError(
                    STAGE_ASSEMBLY, TimeoutError(f"document parsing timed out after {self.parse_timeout:g}s")
                )

        with stage(STAGE_MODEL):
            extraction = await self._extract(bundle)
            report = ReportNormalizer(request.fields).normalize(extraction.payload)

        with stage(STAGE_ENFORCEMENT):
            ctx = RuleContext.build(request.fields, bundle.detection_texts + [extraction.label_text])
            self.enforcer.enforce(report, ctx, blank=bundle.is_blank)

        with stage(STAGE_SCORING):
            finalize(report)
        LOG.info("Report scored: %s (%d/100)", report.overall_status, report.score)

        result = PreflightResult(
            report=report,
            halal_audit=request.halal_audit,
            return_pdf=request.return_pdf,
            notes=list(bundle.notes),
        )
        if extraction.degraded:
            result.notes.append(f"model extraction degraded: {extraction.degraded_reason}")

        if request.halal_audit:
            with stage(STAGE_HALAL):
                result.halal_checks = await self._halal(bundle, ctx, extraction.label_text)

        needs_pdf = request.return_pdf or (request.attach_pdf and bool(request.fields.company_email))
        if needs_pdf:
            await self._render(request, result)

        with stage(STAGE_DELIVERY):
            await self._deliver(request, result)
        LOG.info("Preflight finished: email_status=%s pdf=%s", result.email_status, "yes" if result.pdf else "no")
        return result

    def run_sync(self, request: PreflightRequest) -> PreflightResult:
        return asyncio.run(self.run(request))
