import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs, find_project_root, kb_dir as _default_kb_dir

log = get_logger("config")


DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAIL_FROM = "LabelCheck <onboarding@resend.dev>"

# Fixed set of named reference documents making up the knowledge base.
KB_FILES: Tuple[str, ...] = (
    "house_rules.md",
    "eu_1169_2011.md",
    "allergens_annex_ii.md",
    "halal_guidelines.md",
)


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running the service from subdirectories (e.g., `src/`) still
    find repository-level config files like `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Read key=value pairs from the nearest .env without mutating os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    try:
        values = dotenv_values(path)
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
        return {}
    env = {k: v.strip() for k, v in values.items() if k and v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def _lookup(name: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(name)
    if v is None:
        v = env.get(name) or env.get(name.lower())
    if v is None:
        return None
    v = v.strip()
    return v or None


def _lookup_float(name: str, env: Dict[str, str], default: float) -> float:
    raw = _lookup(name, env)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning(f"{name}={raw!r} is not a number; using {default}")
        return default


def load_openai(dotenv_dir: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (api_key, base_url) for the hosted model API from env or .env."""
    env = _read_dotenv(dotenv_dir)
    api_key = _lookup("OPENAI_API_KEY", env)
    base_url = _lookup("OPENAI_BASE_URL", env)
    if api_key:
        log.info("Using OPENAI_API_KEY from environment/.env")
    else:
        log.debug("OPENAI_API_KEY not found in env or .env")
    return api_key, base_url


def load_models(dotenv_dir: str) -> Tuple[str, Optional[str]]:
    """Return (primary_model, fallback_model) with sensible defaults."""
    env = _read_dotenv(dotenv_dir)
    model = _lookup("LABELCHECK_MODEL", env) or DEFAULT_MODEL
    fallback = _lookup("LABELCHECK_FALLBACK_MODEL", env)
    if fallback == model:
        fallback = None
    return model, fallback


def load_resend(dotenv_dir: str) -> Tuple[Optional[str], str]:
    """Return (resend_api_key, sender_address)."""
    env = _read_dotenv(dotenv_dir)
    api_key = _lookup("RESEND_API_KEY", env)
    sender = _lookup("LABELCHECK_MAIL_FROM", env) or DEFAULT_MAIL_FROM
    return api_key, sender


def load_kb_dir(dotenv_dir: str) -> str:
    env = _read_dotenv(dotenv_dir)
    override = _lookup("LABELCHECK_KB_DIR", env)
    if override:
        return expand_abs(override)
    return _default_kb_dir(find_project_root(dotenv_dir))


@dataclass(frozen=True)
class ServiceConfig:
    """Resolved, immutable settings for one service process."""

    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    model: str
    fallback_model: Optional[str]
    resend_api_key: Optional[str]
    mail_from: str
    kb_dir: str
    model_timeout: float = 90.0
    parse_timeout: float = 30.0
    render_timeout: float = 30.0
    mail_timeout: float = 30.0
    model_attempts: int = 3


def _mask(secret: Optional[str]) -> str:
    if not secret:
        return "<unset>"
    return f"{secret[:4]}…({len(secret)} chars)"


def build_service_config(dotenv_dir: Optional[str] = None) -> ServiceConfig:
    """Create a ServiceConfig from env/.env while logging helpful diagnostics."""
    start = dotenv_dir or os.getcwd()
    env = _read_dotenv(start)
    api_key, base_url = load_openai(start)
    model, fallback = load_models(start)
    resend_key, mail_from = load_resend(start)
    attempts = int(_lookup_float("LABELCHECK_MODEL_ATTEMPTS", env, 3))

    config = ServiceConfig(
        openai_api_key=api_key,
        openai_base_url=base_url,
        model=model,
        fallback_model=fallback,
        resend_api_key=resend_key,
        mail_from=mail_from,
        kb_dir=load_kb_dir(start),
        model_timeout=_lookup_float("LABELCHECK_MODEL_TIMEOUT", env, 90.0),
        parse_timeout=_lookup_float("LABELCHECK_PARSE_TIMEOUT", env, 30.0),
        render_timeout=_lookup_float("LABELCHECK_RENDER_TIMEOUT", env, 30.0),
        mail_timeout=_lookup_float("LABELCHECK_MAIL_TIMEOUT", env, 30.0),
        model_attempts=max(1, attempts),
    )

    log.info("Service configuration prepared")
    log.info(f"Model              : {config.model}")
    log.info(f"Fallback model     : {config.fallback_model or '-'}")
    log.info(f"Model API key      : {_mask(config.openai_api_key)}")
    log.info(f"Model base URL     : {config.openai_base_url or 'default'}")
    log.info(f"Resend API key     : {_mask(config.resend_api_key)}")
    log.info(f"Mail sender        : {config.mail_from}")
    log.info(f"Knowledge base dir : {config.kb_dir}")
    log.info(f"Model attempts     : {config.model_attempts}")
    log.info(f"Timeouts (s)       : parse={config.parse_timeout:g} model={config.model_timeout:g} render={config.render_timeout:g} mail={config.mail_timeout:g}")
    return config


@dataclass(frozen=True)
class KbDocument:
    name: str
    text: str


def load_kb_corpus(directory: str, names: Tuple[str, ...] = KB_FILES) -> Tuple[KbDocument, ...]:
    """Read the named reference documents once; missing files are skipped."""
    docs = []
    for name in names:
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            log.warning(f"Knowledge-base document missing: {path}")
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read().strip()
        except OSError as e:
            log.warning(f"Failed to read knowledge-base document {path}: {e}")
            continue
        if text:
            docs.append(KbDocument(name=name, text=text))
    log.info(f"Loaded {len(docs)} knowledge-base document(s) from {directory}")
    return tuple(docs)
