from __future__ import annotations

import base64
import html
from typing import Any, Dict, List, Optional

import requests

from ..domain.models import Report
from ..logging import get_logger
from .request import ProductFields

RESEND_ENDPOINT = "https://api.resend.com/emails"
ATTACHMENT_NAME = "LabelCheck_Report.pdf"

STATUS_SENT = "sent"


class ResendClient:
    """Thin client for the Resend email API with session, timeouts, and logging."""

    def __init__(
        self,
        api_key: str,
        *,
        sender: str,
        timeout: float = 30.0,
        endpoint: str = RESEND_ENDPOINT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.sender = sender
        self.timeout = timeout
        self.endpoint = endpoint
        self.log = get_logger("preflight-mail")
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def send(
        self,
        *,
        to: str,
        subject: str,
        html_body: str,
        attachments: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        if attachments:
            payload["attachments"] = attachments
        self.log.info(f"POST email: to={to!r}, subject={subject!r}, attachments={len(attachments or [])}")
        r = self.s.post(self.endpoint, json=payload, timeout=self.timeout)
        if r.status_code >= 400:
            self.log.error(f"Resend HTTP {r.status_code}: {r.text[:300]}")
        r.raise_for_status()
        try:
            return r.json()
        except ValueError:
            return {}


def _email_html(fields: ProductFields, report: Report) -> str:
    product = html.escape(report.product.name or fields.product_name or "your product")
    company = html.escape(fields.company_name or "")
    open_items = len(report.open_checks())
    return (
        f"<p>Hello {company},</p>"
        f"<p>Attached is your preliminary compliance report for <strong>{product}</strong>.</p>"
        f"<p>Overall: <strong>{html.escape(report.overall_status.upper())}</strong> "
        f"(score {report.score}/100, {open_items} open item(s)).</p>"
        f"<p>{html.escape(report.summary)}</p>"
        "<p>Best,<br/>LabelCheck</p>"
    )


class ReportMailer:
    """Sends the report; never raises, always returns a status string."""

    def __init__(self, client: Optional[ResendClient]) -> None:
        self.client = client
        self.log = get_logger("preflight-mail")

    def send_report(
        self,
        *,
        fields: ProductFields,
        report: Report,
        pdf: Optional[bytes],
        attach_pdf: bool = True,
    ) -> str:
        recipient = fields.company_email
        if not recipient:
            return "skipped: no recipient"
        if "@" not in recipient:
            return f"skipped: invalid recipient {recipient!r}"
        if self.client is None:
            return "skipped: email not configured"

        product = report.product.name or fields.product_name or "Your Product"
        attachments = None
        if attach_pdf and pdf:
            attachments = [{
                "filename": ATTACHMENT_NAME,
                "content": base64.b64encode(pdf).decode("ascii"),
                "content_type": "application/pdf",
            }]
        try:
            self.client.send(
                to=recipient,
                subject=f"LabelCheck Report — {product}",
                html_body=_email_html(fields, report),
                attachments=attachments,
            )
        except requests.RequestException as e:
            self.log.error(f"Email delivery failed: {e}")
            return f"failed: {e}"
        self.log.info(f"Report emailed to {recipient}")
        return STATUS_SENT
