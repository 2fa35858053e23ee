from __future__ import annotations

import argparse
import base64
import json
import mimetypes
import os
import sys
from typing import Any, Dict, Optional, Sequence

from ..config import build_service_config
from ..logging import get_logger
from ..paths import expand_abs

LOG = get_logger("cli-main")


def _file_payload(path: str) -> Dict[str, str]:
    with open(expand_abs(path), "rb") as fh:
        data = fh.read()
    return {"name": os.path.basename(path), "base64": base64.b64encode(data).decode("ascii")}


def _image_data_url(path: str) -> str:
    mime, _ = mimetypes.guess_type(path)
    with open(expand_abs(path), "rb") as fh:
        data = fh.read()
    return f"data:{mime or 'image/png'};base64,{base64.b64encode(data).decode('ascii')}"


def build_check_payload(ns: argparse.Namespace) -> Dict[str, Any]:
    """Translate `check` arguments into the HTTP request body shape."""
    payload: Dict[str, Any] = {
        "product_name": ns.product_name or "",
        "company_name": ns.company_name or "",
        "company_email": "" if ns.no_email else (ns.company_email or ""),
        "country_of_sale": ns.country or "",
        "languages_provided": ns.languages or [],
        "shipping_scope": ns.shipping_scope,
        "product_category": ns.category,
        "halal_audit": bool(ns.halal),
        "return_pdf": bool(ns.pdf_out),
    }
    label = ns.label
    if label.lower().endswith(".pdf"):
        payload["label_pdf_file"] = _file_payload(label)
    else:
        payload["label_image_data_url"] = _image_data_url(label)
    if ns.tds:
        payload["tds_file"] = _file_payload(ns.tds)
    if ns.extra_rules:
        with open(expand_abs(ns.extra_rules), "r", encoding="utf-8") as fh:
            payload["reference_docs_text"] = fh.read()
    return payload


def _handle_check(ns: argparse.Namespace) -> int:
    from ..preflight import PreflightInputError, PreflightRequest, PreflightService

    try:
        request = PreflightRequest.from_payload(build_check_payload(ns))
    except (OSError, PreflightInputError) as exc:
        LOG.error(f"Cannot build request: {exc}")
        return 2

    service = PreflightService.from_config(build_service_config(os.getcwd()))
    result = service.run_sync(request)
    body = result.as_response()
    pdf_b64: Optional[str] = body.pop("pdf_base64", None)
    if ns.pdf_out and pdf_b64:
        out = expand_abs(ns.pdf_out)
        os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
        with open(out, "wb") as fh:
            fh.write(base64.b64decode(pdf_b64))
        LOG.info(f"Wrote report PDF: {out}")
    print(json.dumps(body, ensure_ascii=False, indent=2))
    return 0


def _handle_serve(ns: argparse.Namespace) -> int:
    import uvicorn

    if ns.allow_origins:
        os.environ["LABELCHECK_ALLOW_ORIGINS"] = ",".join(ns.allow_origins)
    uvicorn.run(
        "labelcheck.api.app:app_from_env",
        factory=True,
        host=ns.host,
        port=ns.port,
        reload=ns.reload,
        log_level=ns.log_level,
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.info(f"LabelCheck CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="labelcheck",
        description="LabelCheck preflight: EU 1169/2011 label compliance service.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the preflight HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)

    check = subparsers.add_parser("check", help="Run one preflight on local files and print the JSON response.")
    check.add_argument("--label", required=True, help="Label image (png/jpg/webp) or PDF")
    check.add_argument("--tds", help="Technical data sheet (PDF, DOCX or text)")
    check.add_argument("--product-name")
    check.add_argument("--company-name")
    check.add_argument("--company-email")
    check.add_argument("--country", help="Country of sale, e.g. Italy")
    check.add_argument("--language", action="append", dest="languages", help="Label language (repeatable)")
    check.add_argument("--shipping-scope", default="local")
    check.add_argument("--category", default="general")
    check.add_argument("--extra-rules", help="Text file with additional house rules")
    check.add_argument("--halal", action="store_true", help="Also run the Halal pre-audit")
    check.add_argument("--pdf-out", help="Write the rendered report PDF here")
    check.add_argument("--no-email", action="store_true", help="Never email the report")
    check.set_defaults(handler=_handle_check)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
