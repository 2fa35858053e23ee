"""Lay the finished report out as an A4 PDF with PyMuPDF."""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from ..domain import constants as C
from ..domain.models import Check, Report
from ..logging import get_logger
from .errors import RenderError
from .request import ProductFields

LOG = get_logger("preflight-render")

MIN_PLAUSIBLE_BYTES = 800
MARGIN = 50
FONT = "helv"
FONT_BOLD = "hebo"

BLACK = (0, 0, 0)
DARK = (0.04, 0.06, 0.13)
GREY = (0.27, 0.27, 0.27)
LIGHT_GREY = (0.47, 0.47, 0.47)
GREEN = (0.04, 0.24, 0.01)
BLUE = (0.31, 0.49, 1.0)
STATUS_COLORS = {
    C.STATUS_OK: (0.1, 0.5, 0.2),
    C.STATUS_ISSUE: (0.8, 0.45, 0.0),
    C.STATUS_MISSING: (0.75, 0.1, 0.1),
}
OVERALL_COLORS = {
    C.OVERALL_PASS: STATUS_COLORS[C.STATUS_OK],
    C.OVERALL_CAUTION: STATUS_COLORS[C.STATUS_ISSUE],
    C.OVERALL_FAIL: STATUS_COLORS[C.STATUS_MISSING],
}

DISCLAIMER = (
    "Disclaimer: automated triage against EU 1169/2011 and house rules. "
    "For legal compliance, consult qualified professionals."
)

_REPLACEMENTS = {"•": "-", "—": "-", "–": "-", "…": "...", "’": "'", "‘": "'", "“": '"', "”": '"', "℮": "e"}


def _latin(text: str) -> str:
    """Base-14 fonts only cover Latin-1."""
    for src, dst in _REPLACEMENTS.items():
        text = text.replace(src, dst)
    return text.encode("latin-1", errors="replace").decode("latin-1")


class _Layout:
    """Cursor-based writer: wraps lines and starts new pages as needed."""

    def __init__(self, doc: fitz.Document) -> None:
        self.doc = doc
        self.rect = fitz.paper_rect("a4")
        self.page: Optional[fitz.Page] = None
        self.y = 0.0
        self.new_page()

    @property
    def width(self) -> float:
        return self.rect.width - 2 * MARGIN

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=self.rect.width, height=self.rect.height)
        self.y = MARGIN

    def ensure(self, height: float) -> None:
        if self.y + height > self.rect.height - MARGIN:
            self.new_page()

    def space(self, height: float) -> None:
        self.y += height

    @staticmethod
    def wrap(text: str, fontname: str, size: float, width: float) -> List[str]:
        lines: List[str] = []
        for paragraph in text.split("\n"):
            words = paragraph.split()
            if not words:
                lines.append("")
                continue
            current = ""
            for word in words:
                candidate = f"{current} {word}" if current else word
                if fitz.get_text_length(candidate, fontname=fontname, fontsize=size) <= width:
                    current = candidate
                    continue
                if current:
                    lines.append(current)
                current = word
                # hard-split words wider than the column
                while fitz.get_text_length(current, fontname=fontname, fontsize=size) > width and len(current) > 1:
                    cut = len(current) - 1
                    while cut > 1 and fitz.get_text_length(current[:cut], fontname=fontname, fontsize=size) > width:
                        cut -= 1
                    lines.append(current[:cut])
                    current = current[cut:]
            lines.append(current)
        return lines

    def text(
        self,
        text: str,
        *,
        size: float = 10,
        color: Tuple[float, float, float] = BLACK,
        bold: bool = False,
        indent: float = 0,
        gap: float = 2,
    ) -> None:
        fontname = FONT_BOLD if bold else FONT
        leading = size * 1.3
        for line in self.wrap(_latin(text), fontname, size, self.width - indent):
            self.ensure(leading)
            self.page.insert_text(
                fitz.Point(MARGIN + indent, self.y + size),
                line,
                fontname=fontname,
                fontsize=size,
                color=color,
            )
            self.y += leading
        self.y += gap

    def rule(self) -> None:
        self.ensure(8)
        self.page.draw_line(
            fitz.Point(MARGIN, self.y + 2),
            fitz.Point(self.rect.width - MARGIN, self.y + 2),
            color=LIGHT_GREY,
            width=0.5,
        )
        self.y += 8


class ReportRenderer:
    """Cover/summary, EU checks, optional Halal section, remediation list."""

    def __init__(self, *, brand: str = "LabelCheck") -> None:
        self.brand = brand

    def render(
        self,
        report: Report,
        fields: ProductFields,
        *,
        halal_checks: Sequence[Check] = (),
        include_halal: bool = False,
        today: Optional[date] = None,
    ) -> bytes:
        stamp_date = (today or date.today()).isoformat()
        doc = fitz.open()
        try:
            layout = _Layout(doc)
            self._cover(layout, report, fields, stamp_date)
            self._checks(layout, "EU 1169/2011 checks", report.checks)
            if include_halal and halal_checks:
                self._checks(layout, "Halal pre-audit", halal_checks)
                layout.text(
                    "Halal findings are indicative and do not affect the EU compliance score.",
                    size=9, color=LIGHT_GREY,
                )
            self._remediation(layout, list(report.checks) + (list(halal_checks) if include_halal else []))
            layout.space(10)
            layout.rule()
            layout.text(DISCLAIMER, size=8, color=LIGHT_GREY)
            pages = doc.page_count
            data = doc.tobytes()
        finally:
            doc.close()
        LOG.info("Rendered report: %d page(s), %d bytes", pages, len(data))
        return data

    def _cover(self, layout: _Layout, report: Report, fields: ProductFields, stamp_date: str) -> None:
        page = layout.page
        stamp = fitz.Rect(layout.rect.width - MARGIN - 150, 40, layout.rect.width - MARGIN, 95)
        page.draw_rect(stamp, color=BLUE, width=2)
        page.insert_text(fitz.Point(stamp.x0 + 10, stamp.y0 + 22), "PREFLIGHT CHECKED", fontname=FONT_BOLD, fontsize=11, color=BLUE)
        page.insert_text(fitz.Point(stamp.x0 + 10, stamp.y0 + 40), stamp_date, fontname=FONT, fontsize=9, color=LIGHT_GREY)
        layout.y = stamp.y1 + 10

        layout.text(f"{self.brand} - Compliance Assessment", size=20, color=DARK, bold=True, gap=4)
        layout.text("Preliminary analysis based on EU 1169/2011 and house rules.", size=10, color=GREY, gap=14)
        layout.space(10)

        product = report.product
        languages = ", ".join(product.languages_provided) or "-"
        for label, value in (
            ("Company", fields.company_name or "-"),
            ("Product", product.name or fields.product_name or "-"),
            ("Category", fields.product_category or "-"),
            ("Shipping scope", fields.shipping_scope or "-"),
            ("Country of sale", product.country_of_sale or "-"),
            ("Languages", languages),
        ):
            layout.text(f"{label}: {value}", size=11, gap=1)

        layout.space(8)
        layout.text(
            f"Overall: {report.overall_status.upper()}    Score: {report.score}/100",
            size=14, bold=True, color=OVERALL_COLORS.get(report.overall_status, BLACK),
        )
        layout.text(report.summary or "-", size=11, color=GREY, gap=10)

    def _checks(self, layout: _Layout, heading: str, checks: Sequence[Check]) -> None:
        layout.space(6)
        layout.ensure(60)
        layout.text(heading, size=13, bold=True, gap=2)
        layout.rule()
        for check in checks:
            layout.ensure(48)
            color = STATUS_COLORS.get(check.status, BLACK)
            layout.text(
                f"{check.title} [{check.status.upper()} | {check.severity}]",
                size=11, bold=True, color=color, gap=1,
            )
            layout.text(f"Detail: {check.detail or '-'}", size=9, color=GREY, indent=10, gap=1)
            if not check.is_ok:
                layout.text(f"Fix: {check.fix or '-'}", size=9, color=GREEN, indent=10, gap=1)
            if check.sources:
                layout.text(f"Sources: {', '.join(check.sources)}", size=8, color=LIGHT_GREY, indent=10, gap=1)
            layout.space(5)

    def _remediation(self, layout: _Layout, checks: Sequence[Check]) -> None:
        open_checks = sorted(
            (c for c in checks if not c.is_ok),
            key=lambda c: -C.SEVERITY_RANK.get(c.severity, 0),
        )
        layout.space(6)
        layout.ensure(60)
        layout.text("Remediation plan", size=13, bold=True, gap=2)
        layout.rule()
        if not open_checks:
            layout.text("No open items.", size=10, color=GREY)
            return
        for n, check in enumerate(open_checks, start=1):
            layout.text(
                f"{n}. [{check.severity.upper()}] {check.title}: {check.fix or 'Review manually.'}",
                size=10, gap=3,
            )


def check_plausible(data: bytes) -> bytes:
    if not isinstance(data, (bytes, bytearray)) or not bytes(data[:5]) == b"%PDF-":
        raise RenderError("renderer did not return a PDF")
    if len(data) < MIN_PLAUSIBLE_BYTES:
        raise RenderError(f"rendered PDF implausibly small ({len(data)} bytes)")
    return bytes(data)


def render_fallback(product_name: str, message: str, *, brand: str = "LabelCheck") -> bytes:
    """Single-page document used when the full report cannot be rendered."""
    doc = fitz.open()
    try:
        layout = _Layout(doc)
        layout.text(f"{brand} - Compliance Assessment", size=18, bold=True, color=DARK, gap=8)
        layout.text(f"Product: {product_name or '-'}", size=11, gap=10)
        layout.text(message, size=10, color=GREY)
        layout.text("The full report is included in the JSON response.", size=10, color=GREY)
        return doc.tobytes()
    finally:
        doc.close()


def _pdf_string(text: str) -> str:
    text = _latin(text).encode("latin-1", "replace").decode("latin-1")
    return "(" + text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)") + ")"


def static_pdf(lines: List[str]) -> bytes:
    """Hand-assembled one-page PDF that does not depend on PyMuPDF."""
    ops = ["BT", "/F1 12 Tf", "14 TL", f"{MARGIN} 790 Td"]
    for line in lines:
        ops.append(f"{_pdf_string(line)} Tj T*")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for n, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % n + body + b"\nendobj\n"
    xref = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref)
    return bytes(out)
