import os
from typing import Dict, Optional, Tuple

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")


DEFAULT_ENDPOINTS: Dict[str, Tuple[str, str]] = {
    # provider id -> (endpoint, model); Gemini's endpoint is a template over the model
    "gemini": (
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        "gemini-2.5-flash-preview-09-2025",
    ),
    "deepseek": ("https://api.deepseek.com/chat/completions", "deepseek-chat"),
    "openai": ("https://api.openai.com/v1/chat/completions", "gpt-4o-mini"),
}

DEFAULT_OCR_LANGUAGE = "eng"
DEFAULT_TIMEOUT_SECONDS = 60


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    repository-level config files like `.env`.
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
    """Return key/value pairs of the nearest .env; never mutates os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    try:
        values = dotenv_values(path)
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
        return {}
    env = {k: v.strip() for k, v in values.items() if isinstance(v, str)}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def _lookup(name: str, env: Optional[Dict[str, str]], dotenv_dir: str) -> Tuple[Optional[str], Dict[str, str]]:
    v = os.environ.get(name)
    if v and v.strip():
        return v.strip(), env or {}
    if env is None:
        env = _read_dotenv(dotenv_dir)
    v = env.get(name) or env.get(name.lower())
    return (v.strip() if v else None), env


def load_provider_settings(dotenv_dir: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (provider_id, api_key) seeds from R2R_PROVIDER / R2R_API_KEY.

    These only seed an empty settings store; persisted settings win.
    """
    provider, env = _lookup("R2R_PROVIDER", None, dotenv_dir)
    api_key, _ = _lookup("R2R_API_KEY", env, dotenv_dir)
    return provider, api_key


def load_gemini_default_key(dotenv_dir: str) -> Optional[str]:
    """Return the shared Gemini key used when the user configured none."""
    v, _ = _lookup("GEMINI_API_KEY", None, dotenv_dir)
    if v:
        log.info("Using GEMINI_API_KEY as the default Gemini key")
    else:
        log.debug("GEMINI_API_KEY not found in env or .env")
    return v


def load_provider_endpoints(dotenv_dir: str) -> Dict[str, Tuple[str, str]]:
    """Return {provider_id: (endpoint, model)} with env/.env overrides applied.

    Overrides: <PROVIDER>_ENDPOINT and <PROVIDER>_MODEL, e.g. OPENAI_MODEL.
    """
    env: Optional[Dict[str, str]] = None
    out: Dict[str, Tuple[str, str]] = {}
    for provider, (endpoint, model) in DEFAULT_ENDPOINTS.items():
        prefix = provider.upper()
        ep, env = _lookup(f"{prefix}_ENDPOINT", env, dotenv_dir)
        md, env = _lookup(f"{prefix}_MODEL", env, dotenv_dir)
        out[provider] = (ep or endpoint, md or model)
    return out


def load_ocr_language(dotenv_dir: str) -> str:
    v, _ = _lookup("OCR_LANGUAGE", None, dotenv_dir)
    return v or DEFAULT_OCR_LANGUAGE


def load_timeout(dotenv_dir: str, fallback: int = DEFAULT_TIMEOUT_SECONDS) -> int:
    v, _ = _lookup("PROVIDER_TIMEOUT", None, dotenv_dir)
    if not v:
        return fallback
    try:
        return max(1, int(v))
    except ValueError:
        log.warning(f"PROVIDER_TIMEOUT={v!r} is not an integer; using {fallback}s")
        return fallback
