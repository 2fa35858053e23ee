from __future__ import annotations

import argparse
import base64
from pathlib import Path

import pytest

from labelcheck.cli.main import build_check_payload
from labelcheck.config import build_service_config, load_kb_corpus
from labelcheck.preflight.errors import PreflightInputError
from labelcheck.preflight.request import PreflightRequest

_ENV_KEYS = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "LABELCHECK_MODEL",
    "LABELCHECK_FALLBACK_MODEL",
    "RESEND_API_KEY",
    "LABELCHECK_MAIL_FROM",
    "LABELCHECK_MODEL_TIMEOUT",
    "LABELCHECK_MODEL_ATTEMPTS",
    "LABELCHECK_PARSE_TIMEOUT",
    "LABELCHECK_KB_DIR",
)


def test_request_requires_a_json_object():
    with pytest.raises(PreflightInputError):
        PreflightRequest.from_payload(["not", "an", "object"])


def test_request_requires_image_or_pdf():
    with pytest.raises(PreflightInputError):
        PreflightRequest.from_payload({"product_name": "X", "label_pdf_file": {"name": "a.pdf", "base64": ""}})


def test_request_normalizes_fields_and_flags():
    request = PreflightRequest.from_payload({
        "product_name": "  Pistachio Cream ",
        "languages_provided": "it, en;it",
        "label_image_data_url": "data:image/png;base64,iVBORw0KGgo=",
        "halal_audit": "yes",
        "return_pdf": "false",
        "unknown_key": 1,
    })
    assert request.fields.product_name == "Pistachio Cream"
    assert request.fields.languages_provided == ("it", "en")
    assert request.fields.shipping_scope == "local"
    assert request.halal_audit is True
    assert request.return_pdf is False
    assert request.wants_halal_page is True


def test_service_config_reads_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LABELCHECK_KB_DIR", str(tmp_path / "kb"))
    (tmp_path / ".env").write_text(
        "OPENAI_API_KEY=sk-test\nLABELCHECK_MODEL=gpt-test\nLABELCHECK_FALLBACK_MODEL=gpt-test\n"
        "LABELCHECK_MODEL_TIMEOUT=12\nLABELCHECK_MODEL_ATTEMPTS=oops\nLABELCHECK_PARSE_TIMEOUT=7.5\n",
        encoding="utf-8",
    )

    config = build_service_config(str(tmp_path))

    assert config.openai_api_key == "sk-test"
    assert config.model == "gpt-test"
    assert config.fallback_model is None
    assert config.model_timeout == 12.0
    assert config.parse_timeout == 7.5
    assert config.model_attempts == 3
    assert config.resend_api_key is None
    assert config.kb_dir == str(tmp_path / "kb")


def test_environment_wins_over_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    (tmp_path / ".env").write_text("OPENAI_API_KEY=sk-file\n", encoding="utf-8")
    assert build_service_config(str(tmp_path)).openai_api_key == "sk-env"


def test_kb_corpus_skips_missing_documents(tmp_path: Path):
    (tmp_path / "house_rules.md").write_text("Rule one.\n", encoding="utf-8")
    docs = load_kb_corpus(str(tmp_path))
    assert [d.name for d in docs] == ["house_rules.md"]
    assert docs[0].text == "Rule one."


def test_bundled_kb_documents_load():
    root = Path(__file__).resolve().parents[1]
    docs = load_kb_corpus(str(root / "kb"))
    assert {d.name for d in docs} == {"house_rules.md", "eu_1169_2011.md", "allergens_annex_ii.md", "halal_guidelines.md"}


def _namespace(**overrides) -> argparse.Namespace:
    values = dict(
        label="",
        tds=None,
        product_name="Pistachio Cream",
        company_name=None,
        company_email="qa@dolci.it",
        country="Italy",
        languages=["it"],
        shipping_scope="local",
        category="general",
        extra_rules=None,
        halal=False,
        pdf_out=None,
        no_email=True,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


def test_cli_payload_for_image_label(tmp_path: Path):
    label = tmp_path / "label.png"
    label.write_bytes(b"\x89PNG\r\n\x1a\nfake")
    payload = build_check_payload(_namespace(label=str(label)))
    assert payload["label_image_data_url"].startswith("data:image/png;base64,")
    assert payload["company_email"] == ""
    assert payload["return_pdf"] is False
    PreflightRequest.from_payload(payload)


def test_cli_payload_for_pdf_label_and_rules(tmp_path: Path):
    label = tmp_path / "label.pdf"
    label.write_bytes(b"%PDF-1.7 fake")
    rules = tmp_path / "rules.txt"
    rules.write_text("Font size at least 1.2 mm.", encoding="utf-8")
    payload = build_check_payload(
        _namespace(label=str(label), extra_rules=str(rules), pdf_out=str(tmp_path / "out.pdf"), halal=True)
    )
    assert payload["label_pdf_file"]["name"] == "label.pdf"
    assert base64.b64decode(payload["label_pdf_file"]["base64"]) == b"%PDF-1.7 fake"
    assert payload["reference_docs_text"] == "Font size at least 1.2 mm."
    assert payload["halal_audit"] is True
    assert payload["return_pdf"] is True
