"""Model-assisted extraction: prompt building, hosted model calls, retries."""

from __future__ import annotations

import json
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Type

import httpx
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, OpenAI

from ..domain.constants import CANONICAL_CHECKS, SEVERITY_MEDIUM, STATUS_MISSING
from ..logging import get_logger
from .errors import ModelCallError
from .evidence import BLOCK_EXTRA_RULES, BLOCK_LABEL, BLOCK_REFERENCE, BLOCK_TDS, EvidenceBundle
from .jsonparse import ParseFailure, ParseResult, ParseSuccess, recover_json

LOG = get_logger("preflight-model")

SHELL_SUMMARY = "Automated analysis was unavailable; all checks are marked missing and need manual review."


def _check_catalogue() -> str:
    return "\n".join(f"- {c.id}: {c.title}" for c in CANONICAL_CHECKS)


SYSTEM_PROMPT = f"""You are LabelCheck, an EU food label compliance assistant focused on Regulation (EU) No 1169/2011 and related guidance.
Read the label evidence (image and/or extracted text), the technical data sheet, the caller's product fields and the reference documents, then output STRICT JSON.

Output shape (one JSON object, no prose, no markdown fences):
{{
  "product": {{"name": str, "country_of_sale": str, "languages_provided": [str]}},
  "summary": str,
  "label_text": str,
  "checks": [{{"id": str, "title": str, "status": "ok"|"issue"|"missing", "severity": "low"|"medium"|"high", "detail": str, "fix": str, "sources": [str]}}]
}}

Report exactly one check for each of these ids, using the given titles:
{_check_catalogue()}

Rules:
- Be precise and practical. Do not invent facts; mark missing or unclear items as missing or issue, never ok.
- detail quotes the evidence you relied on. fix is an actionable remediation and is empty when status is ok.
- sources cites at most 3 regulation articles or reference document names.
- label_text is a verbatim transcription of the label as seen in the image or PDF. Wrap bold text in **double asterisks** and keep the original capitalization.
- Scope: prepacked foods sold B2C in the EU. If the product is outside scope, say so in summary.
"""

HALAL_PROMPT = """You are a Halal pre-audit assistant. Using the label evidence, the technical data sheet and the Halal guidelines provided, list the Halal concerns of this product.
Return ONLY a JSON object: {"checks": [{"title": str, "status": "ok"|"issue"|"missing", "severity": "low"|"medium"|"high", "detail": str, "fix": str, "sources": [str]}]}
Cover at least: pork-derived ingredients, alcohol, gelatin source, doubtful additives (E120, E441, E542, E904, E920, L-cysteine), and the presence of a Halal certification mark.
Do not invent facts; unclear items are issue or missing, never ok.
"""


def minimal_shell_payload(reason: str) -> Dict[str, Any]:
    """Deterministic stand-in for a model answer that could not be obtained."""
    return {
        "summary": f"{SHELL_SUMMARY} ({reason})",
        "checks": [
            {
                "id": c.id,
                "title": c.title,
                "status": STATUS_MISSING,
                "severity": SEVERITY_MEDIUM,
                "detail": "Not assessed: automated analysis failed.",
                "fix": "Review this item manually against the label.",
            }
            for c in CANONICAL_CHECKS
        ],
    }


# ---------- transport ----------
class ChatTransport(Protocol):
    def complete(self, *, model: str, messages: List[Dict[str, Any]], timeout: float) -> str:
        ...


class OpenAIChatTransport:
    """Chat Completions over the OpenAI SDK; SDK retries are disabled."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout: float = 90.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=timeout, write=30.0, pool=10.0),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=30),
        )
        self._client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=self._http,
            max_retries=0,
        )

    def complete(self, *, model: str, messages: List[Dict[str, Any]], timeout: float) -> str:
        t0 = time.perf_counter()
        try:
            completion = self._client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=0,
                response_format={"type": "json_object"},
                timeout=timeout,
            )
        except (APIConnectionError, APITimeoutError) as exc:
            raise ModelCallError(f"network/timeout: {exc}") from exc
        except APIStatusError as exc:
            status = getattr(exc, "status_code", 0) or 0
            body = getattr(getattr(exc, "response", None), "text", None)
            LOG.error("Model API returned %s. Body preview: %r", status, body[:300] if body else None)
            raise ModelCallError(f"HTTP {status}", retryable=status == 429 or status >= 500) from exc
        except APIError as exc:
            LOG.error("Model API error: %s", exc)
            raise ModelCallError(f"api error: {exc}") from exc
        except Exception as exc:
            # malformed bodies surface as decode errors from the SDK
            LOG.error("Model call raised %s: %s", type(exc).__name__, exc)
            raise ModelCallError(f"unexpected response: {exc}") from exc

        try:
            choice = completion.choices[0] if getattr(completion, "choices", None) else None
            text = choice.message.content if choice and getattr(choice, "message", None) else None
        except (AttributeError, IndexError, TypeError) as exc:
            raise ModelCallError(f"unexpected completion shape: {exc}") from exc
        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info(
            "Chat completion finished in %.2fs model=%s id=%s usage=%s",
            time.perf_counter() - t0, model, getattr(completion, "id", None), usage_dict,
        )
        if not text:
            raise ModelCallError("empty completion")
        return text

    def close(self) -> None:
        self._http.close()


# ---------- client with retry ----------
class ModelClient:
    """Retry/fallback policy around a ChatTransport.

    Each model gets `attempts` tries with delay base * 2**n plus jitter in
    [0, base). Transport errors are retried; a parse failure is final.
    """

    def __init__(
        self,
        transport: Optional[ChatTransport],
        *,
        model: str,
        fallback_model: Optional[str] = None,
        attempts: int = 3,
        backoff_base: float = 1.0,
        timeout: float = 90.0,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self.transport = transport
        self.models = [m for m in (model, fallback_model) if m]
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.timeout = timeout
        self._sleep = sleep
        self._jitter = jitter

    def _delay(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt) + self._jitter() * self.backoff_base

    def complete_json(
        self,
        messages: List[Dict[str, Any]],
        *,
        expect: Optional[Type] = dict,
        purpose: str = "report",
    ) -> ParseResult:
        if self.transport is None:
            LOG.warning("No model transport configured; skipping %s call", purpose)
            return ParseFailure("model API not configured")

        last_error = "no model configured"
        for model in self.models:
            for attempt in range(self.attempts):
                try:
                    LOG.info("Calling model=%s for %s (attempt %d/%d)", model, purpose, attempt + 1, self.attempts)
                    text = self.transport.complete(model=model, messages=messages, timeout=self.timeout)
                except ModelCallError as exc:
                    last_error = f"{model}: {exc}"
                    LOG.warning("Model call failed (%s)", last_error)
                    if not exc.retryable:
                        break
                    if attempt + 1 < self.attempts:
                        delay = self._delay(attempt)
                        LOG.info("Retrying in %.2fs", delay)
                        self._sleep(delay)
                    continue

                result = recover_json(text, expect=expect)
                if isinstance(result, ParseSuccess):
                    LOG.debug("Recovered %s JSON via %s strategy", purpose, result.strategy)
                else:
                    LOG.warning("Model output for %s is not valid JSON: %s; first 300 chars: %r", purpose, result.reason, text[:300])
                return result
            if len(self.models) > 1 and model != self.models[-1]:
                LOG.warning("Model %s exhausted its retry budget; trying fallback", model)

        LOG.error("All model attempts failed for %s: %s", purpose, last_error)
        return ParseFailure(f"model unavailable: {last_error}")


# ---------- message building ----------
def _text_part(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def _evidence_parts(bundle: EvidenceBundle, *, kinds: Sequence[str]) -> List[Dict[str, Any]]:
    headings = {
        BLOCK_REFERENCE: "Reference document",
        BLOCK_EXTRA_RULES: "Additional rules supplied by the caller",
        BLOCK_LABEL: "Label text extracted from the PDF",
        BLOCK_TDS: "Technical data sheet",
    }
    parts: List[Dict[str, Any]] = []
    for kind in kinds:
        for block in bundle.text_blocks:
            if block.kind == kind and block.text.strip():
                parts.append(_text_part(f"{headings[kind]} ({block.name}):\n{block.text}"))
    return parts


def build_report_messages(bundle: EvidenceBundle) -> List[Dict[str, Any]]:
    content: List[Dict[str, Any]] = []
    content.extend(_evidence_parts(bundle, kinds=(BLOCK_REFERENCE, BLOCK_EXTRA_RULES)))
    content.append(_text_part("Provided fields (JSON): " + json.dumps(bundle.fields.as_dict(), ensure_ascii=False)))
    content.extend(_evidence_parts(bundle, kinds=(BLOCK_LABEL, BLOCK_TDS)))
    if bundle.image_data_url:
        content.append({"type": "image_url", "image_url": {"url": bundle.image_data_url}})
    else:
        content.append(_text_part("No label image is available; rely on the extracted text."))
    content.append(_text_part("Return ONLY valid JSON with keys: product, summary, label_text, checks."))
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


def build_halal_messages(bundle: EvidenceBundle, label_text: str = "") -> List[Dict[str, Any]]:
    content: List[Dict[str, Any]] = []
    for block in bundle.text_blocks:
        if block.kind == BLOCK_REFERENCE and block.name.startswith("halal"):
            content.append(_text_part(f"Halal guidelines ({block.name}):\n{block.text}"))
    content.append(_text_part("Provided fields (JSON): " + json.dumps(bundle.fields.as_dict(), ensure_ascii=False)))
    content.extend(_evidence_parts(bundle, kinds=(BLOCK_LABEL, BLOCK_TDS)))
    if label_text:
        content.append(_text_part("Label transcription:\n" + label_text))
    if bundle.image_data_url:
        content.append({"type": "image_url", "image_url": {"url": bundle.image_data_url}})
    return [
        {"role": "system", "content": HALAL_PROMPT},
        {"role": "user", "content": content},
    ]


# ---------- extraction ----------
@dataclass
class Extraction:
    """Raw (untrusted) model answer plus how it was obtained."""

    payload: Dict[str, Any]
    label_text: str = ""
    degraded_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


class ReportExtractor:
    def __init__(self, client: ModelClient) -> None:
        self.client = client

    def extract(self, bundle: EvidenceBundle) -> Extraction:
        result = self.client.complete_json(build_report_messages(bundle), expect=dict, purpose="report")
        if isinstance(result, ParseFailure):
            LOG.warning("Using minimal shell report: %s", result.reason)
            return Extraction(payload=minimal_shell_payload(result.reason), degraded_reason=result.reason)

        payload = dict(result.value)
        label_text = payload.pop("label_text", "")
        if not isinstance(label_text, str):
            label_text = ""
        for key in ("score", "overall_status"):
            if key in payload:
                LOG.debug("Discarding model-declared %s=%r", key, payload.pop(key))
        return Extraction(payload=payload, label_text=label_text.strip())
