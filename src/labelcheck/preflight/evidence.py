"""Input assembly: decode uploads and build the per-request evidence bundle."""

from __future__ import annotations

import base64
import binascii
import io
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from docx import Document

from ..config import KbDocument
from ..logging import get_logger
from .errors import EvidenceDecodeError
from .request import PreflightRequest, ProductFields, UploadedFile

LOG = get_logger("preflight-evidence")

BLOCK_LABEL = "label"
BLOCK_TDS = "tds"
BLOCK_EXTRA_RULES = "extra_rules"
BLOCK_REFERENCE = "reference"

# Blocks that describe the physical label/product and feed the rule engine.
DETECTION_KINDS = (BLOCK_LABEL, BLOCK_TDS)

MIN_PDF_TEXT_CHARS = 40
MAX_BLOCK_CHARS = 12_000
MAX_TOTAL_CHARS = 48_000
RASTER_DPI = 150
TRUNCATION_MARK = "\n[…truncated]"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=.+-]+)*?;base64,(?P<data>.*)$", re.DOTALL)


@dataclass(frozen=True)
class TextBlock:
    kind: str
    name: str
    text: str


@dataclass
class EvidenceBundle:
    fields: ProductFields
    image_data_url: Optional[str] = None
    text_blocks: List[TextBlock] = field(default_factory=list)
    has_pdf_bytes: bool = False
    notes: List[str] = field(default_factory=list)

    def texts_of(self, *kinds: str) -> List[str]:
        return [b.text for b in self.text_blocks if b.kind in kinds and b.text.strip()]

    @property
    def detection_texts(self) -> List[str]:
        return self.texts_of(*DETECTION_KINDS)

    @property
    def is_blank(self) -> bool:
        """True when nothing usable was supplied (image, PDF, TDS, extra text, name)."""
        return not (
            self.image_data_url
            or self.has_pdf_bytes
            or self.texts_of(BLOCK_TDS)
            or self.texts_of(BLOCK_EXTRA_RULES)
            or self.fields.product_name
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "image": bool(self.image_data_url),
            "pdf": self.has_pdf_bytes,
            "blocks": [(b.kind, b.name, len(b.text)) for b in self.text_blocks],
            "notes": list(self.notes),
        }


# ---------- decoders ----------
def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """Return (mime, bytes) for a base64 data URL."""
    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        raise EvidenceDecodeError("not a base64 data URL")
    mime = (match.group("mime") or "application/octet-stream").lower()
    return mime, _b64decode(match.group("data"))


def _b64decode(data: str) -> bytes:
    cleaned = re.sub(r"\s+", "", data or "")
    if not cleaned:
        raise EvidenceDecodeError("empty base64 payload")
    padded = cleaned + "=" * (-len(cleaned) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EvidenceDecodeError(f"invalid base64: {exc}") from exc
    if not raw:
        raise EvidenceDecodeError("empty base64 payload")
    return raw


def decode_uploaded_file(upload: UploadedFile) -> bytes:
    payload = upload.base64
    if payload.startswith("data:"):
        return decode_data_url(payload)[1]
    return _b64decode(payload)


def extract_pdf_text(data: bytes) -> str:
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            if doc.page_count == 0:
                raise EvidenceDecodeError("PDF has no pages")
            parts = [(page.get_text("text") or "").strip() for page in doc]
    except EvidenceDecodeError:
        raise
    except Exception as exc:
        raise EvidenceDecodeError(f"unreadable PDF: {exc}") from exc
    return "\n\n".join(p for p in parts if p)


def rasterize_first_page(data: bytes, *, dpi: int = RASTER_DPI) -> str:
    """Render page 1 of a PDF to a PNG data URL."""
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            if doc.page_count == 0:
                raise EvidenceDecodeError("PDF has no pages")
            page = doc.load_page(0)
            mat = fitz.Matrix(dpi / 72, dpi / 72)
            png = page.get_pixmap(matrix=mat).tobytes("png")
    except EvidenceDecodeError:
        raise
    except Exception as exc:
        raise EvidenceDecodeError(f"PDF rasterization failed: {exc}") from exc
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def extract_docx_text(data: bytes) -> str:
    try:
        doc = Document(io.BytesIO(data))
    except Exception as exc:
        raise EvidenceDecodeError(f"unreadable DOCX: {exc}") from exc

    parts: List[str] = []
    for p in doc.paragraphs:
        t = (p.text or "").strip()
        if t:
            parts.append(t)
    # TDS values usually live in tables
    for table in doc.tables:
        for row in table.rows:
            cells = [(cell.text or "").strip() for cell in row.cells]
            line = " | ".join(c for c in cells if c)
            if line:
                parts.append(line)
    return "\n".join(parts)


def extract_document_text(name: str, data: bytes) -> str:
    """Dispatch on file type: PDF, DOCX or plain text."""
    ext = os.path.splitext(name or "")[1].lower()
    if ext == ".pdf" or data[:5] == b"%PDF-":
        return extract_pdf_text(data)
    if ext == ".docx" or (data[:2] == b"PK" and ext not in {".txt", ".csv", ".md"}):
        return extract_docx_text(data)
    try:
        return data.decode("utf-8").strip()
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="ignore").strip()


# ---------- truncation ----------
def _trim_at_line(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text.rfind("\n", 0, limit)
    if cut < limit // 2:
        cut = limit
    return text[:cut].rstrip() + TRUNCATION_MARK


def truncate_blocks(
    blocks: Sequence[TextBlock],
    *,
    max_block_chars: int = MAX_BLOCK_CHARS,
    max_total_chars: int = MAX_TOTAL_CHARS,
) -> List[TextBlock]:
    """Apply per-block and total budgets, earlier blocks first.

    Reference documents are kept whole or dropped, never cut mid-document.
    """
    kept: List[TextBlock] = []
    remaining = max_total_chars
    for block in blocks:
        text = block.text
        if block.kind == BLOCK_REFERENCE:
            if len(text) > remaining:
                LOG.info("Dropping reference document %s (%d chars, %d left)", block.name, len(text), remaining)
                continue
        else:
            text = _trim_at_line(text, min(max_block_chars, remaining))
            if len(text) > remaining or remaining < 200:
                LOG.info("Dropping %s block %s; budget exhausted", block.kind, block.name)
                continue
        if text != block.text:
            LOG.info("Truncated %s block %s from %d to %d chars", block.kind, block.name, len(block.text), len(text))
        kept.append(TextBlock(kind=block.kind, name=block.name, text=text))
        remaining -= len(text)
    return kept


# ---------- assembly ----------
class EvidenceAssembler:
    """Turn a validated request plus the static corpus into an EvidenceBundle."""

    def __init__(
        self,
        kb_corpus: Sequence[KbDocument] = (),
        *,
        min_pdf_text_chars: int = MIN_PDF_TEXT_CHARS,
        max_block_chars: int = MAX_BLOCK_CHARS,
        max_total_chars: int = MAX_TOTAL_CHARS,
    ) -> None:
        self.kb_corpus = tuple(kb_corpus)
        self.min_pdf_text_chars = min_pdf_text_chars
        self.max_block_chars = max_block_chars
        self.max_total_chars = max_total_chars

    def assemble(self, request: PreflightRequest) -> EvidenceBundle:
        bundle = EvidenceBundle(fields=request.fields)
        blocks: List[TextBlock] = []

        if request.label_image_data_url:
            self._add_image(bundle, request.label_image_data_url)

        if request.label_pdf_file is not None:
            label_text = self._add_label_pdf(bundle, request.label_pdf_file)
            if label_text:
                blocks.append(TextBlock(BLOCK_LABEL, request.label_pdf_file.name, label_text))

        if request.tds_file is not None:
            tds_text = self._read_tds(bundle, request.tds_file)
            if tds_text:
                blocks.append(TextBlock(BLOCK_TDS, request.tds_file.name, tds_text))

        if request.reference_docs_text:
            blocks.append(TextBlock(BLOCK_EXTRA_RULES, "reference_docs_text", request.reference_docs_text))

        for doc in self.kb_corpus:
            blocks.append(TextBlock(BLOCK_REFERENCE, doc.name, doc.text))

        bundle.text_blocks = truncate_blocks(
            blocks,
            max_block_chars=self.max_block_chars,
            max_total_chars=self.max_total_chars,
        )
        LOG.info("Evidence assembled: %s", bundle.summary())
        if bundle.is_blank:
            LOG.warning("Evidence bundle is blank; model extraction will be bypassed")
        return bundle

    def _add_image(self, bundle: EvidenceBundle, data_url: str) -> None:
        try:
            mime, _ = decode_data_url(data_url)
        except EvidenceDecodeError as exc:
            LOG.warning("Skipping label image: %s", exc)
            bundle.notes.append(f"label image skipped: {exc}")
            return
        if not mime.startswith("image/"):
            LOG.warning("Skipping label image with MIME type %s", mime)
            bundle.notes.append(f"label image skipped: unsupported type {mime}")
            return
        bundle.image_data_url = data_url

    def _add_label_pdf(self, bundle: EvidenceBundle, upload: UploadedFile) -> str:
        try:
            data = decode_uploaded_file(upload)
        except EvidenceDecodeError as exc:
            LOG.warning("Skipping label PDF %s: %s", upload.name, exc)
            bundle.notes.append(f"label PDF skipped: {exc}")
            return ""
        bundle.has_pdf_bytes = True

        try:
            text = extract_pdf_text(data)
        except EvidenceDecodeError as exc:
            LOG.warning("Label PDF text extraction failed: %s", exc)
            bundle.notes.append(f"label PDF text unavailable: {exc}")
            text = ""

        dense = len(re.sub(r"\s+", "", text))
        if dense >= self.min_pdf_text_chars:
            return text

        LOG.info("Label PDF text sparse (%d chars); rasterizing first page", dense)
        if bundle.image_data_url:
            LOG.debug("Label image already supplied; keeping it instead of the raster")
            return text
        try:
            bundle.image_data_url = rasterize_first_page(data)
        except EvidenceDecodeError as exc:
            LOG.warning("Rasterization failed: %s", exc)
            bundle.notes.append(f"label PDF raster unavailable: {exc}")
        return text

    def _read_tds(self, bundle: EvidenceBundle, upload: UploadedFile) -> str:
        try:
            data = decode_uploaded_file(upload)
            return extract_document_text(upload.name, data)
        except EvidenceDecodeError as exc:
            LOG.warning("Skipping TDS %s: %s", upload.name, exc)
            bundle.notes.append(f"TDS skipped: {exc}")
            return ""
