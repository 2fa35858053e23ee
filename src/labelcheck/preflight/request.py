from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..logging import get_logger
from .errors import PreflightInputError

LOG = get_logger("preflight-request")


@dataclass(frozen=True)
class ProductFields:
    """Caller-supplied product metadata; immutable once assembled."""

    product_name: str = ""
    company_name: str = ""
    company_email: str = ""
    country_of_sale: str = ""
    languages_provided: Tuple[str, ...] = ()
    shipping_scope: str = "local"
    product_category: str = "general"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "product_name": self.product_name,
            "company_name": self.company_name,
            "company_email": self.company_email,
            "country_of_sale": self.country_of_sale,
            "languages_provided": list(self.languages_provided),
            "shipping_scope": self.shipping_scope,
            "product_category": self.product_category,
        }


@dataclass(frozen=True)
class UploadedFile:
    name: str
    base64: str


@dataclass(frozen=True)
class PreflightRequest:
    fields: ProductFields
    reference_docs_text: str = ""
    halal_audit: bool = False
    label_image_data_url: Optional[str] = None
    label_pdf_file: Optional[UploadedFile] = None
    tds_file: Optional[UploadedFile] = None
    return_pdf: bool = True
    attach_pdf: bool = True
    include_halal_page: Optional[bool] = None

    @property
    def wants_halal_page(self) -> bool:
        if self.include_halal_page is None:
            return self.halal_audit
        return self.include_halal_page and self.halal_audit

    @classmethod
    def from_payload(cls, body: Any) -> "PreflightRequest":
        """Validate the request shape; raises PreflightInputError on bad input."""
        if not isinstance(body, dict):
            raise PreflightInputError("Request body must be a JSON object")

        image = _text(body.get("label_image_data_url")) or None
        pdf_file = _uploaded(body.get("label_pdf_file"), default_name="label.pdf")
        if not image and pdf_file is None:
            raise PreflightInputError("label_image_data_url or label_pdf_file is required")

        fields = ProductFields(
            product_name=_text(body.get("product_name")),
            company_name=_text(body.get("company_name")),
            company_email=_text(body.get("company_email")),
            country_of_sale=_text(body.get("country_of_sale")),
            languages_provided=_languages(body.get("languages_provided")),
            shipping_scope=_text(body.get("shipping_scope")) or "local",
            product_category=_text(body.get("product_category")) or "general",
        )
        known = {
            "product_name", "company_name", "company_email", "country_of_sale", "languages_provided",
            "shipping_scope", "product_category", "reference_docs_text", "halal_audit",
            "label_image_data_url", "label_pdf_file", "tds_file", "return_pdf", "attach_pdf",
            "include_halal_page",
        }
        unknown = sorted(k for k in body if k not in known)
        if unknown:
            LOG.debug("Ignoring unknown request keys: %s", unknown)

        include_halal = body.get("include_halal_page")
        return cls(
            fields=fields,
            reference_docs_text=_text(body.get("reference_docs_text")),
            halal_audit=_flag(body.get("halal_audit"), False),
            label_image_data_url=image,
            label_pdf_file=pdf_file,
            tds_file=_uploaded(body.get("tds_file"), default_name="tds"),
            return_pdf=_flag(body.get("return_pdf"), True),
            attach_pdf=_flag(body.get("attach_pdf"), True),
            include_halal_page=None if include_halal is None else _flag(include_halal, False),
        )


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _flag(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    if isinstance(value, int):
        return bool(value)
    return default


def _languages(value: Any) -> Tuple[str, ...]:
    items: List[str] = []
    if isinstance(value, str):
        items = [part for part in value.replace(";", ",").split(",")]
    elif isinstance(value, (list, tuple)):
        items = [v for v in value if isinstance(v, str)]
    cleaned = []
    for item in items:
        s = item.strip()
        if s and s not in cleaned:
            cleaned.append(s)
    return tuple(cleaned)


def _uploaded(value: Any, *, default_name: str) -> Optional[UploadedFile]:
    if not isinstance(value, dict):
        return None
    data = value.get("base64")
    if not isinstance(data, str) or not data.strip():
        return None
    name = _text(value.get("name")) or default_name
    return UploadedFile(name=name, base64=data.strip())
