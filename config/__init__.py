"""Central configuration for the notary intake wizard.

Values come from the process environment (optionally loaded from a ``.env``
file). Every setting falls back to a sensible default so the wizard runs
locally with in-memory backends when no API endpoints are configured.

``AUTOSAVE_QUIET_PERIOD_SECONDS`` controls the debounce window of the
background autosave; ``STORAGE_QUOTA_BYTES`` caps the local draft store the
same way a browser caps its local storage.
"""

import logging
import os
import warnings

try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


logger = logging.getLogger(__name__)

_TRUTHY_ENV_VALUES: tuple[str, ...] = ("1", "true", "yes", "on")


def _is_truthy_flag(value: str | None) -> bool:
    """Return ``True`` when ``value`` matches a truthy environment token."""

    if value is None:
        return False
    return value.strip().lower() in _TRUTHY_ENV_VALUES


def _parse_positive_int_env(value: object | None, *, env_var: str, default: int) -> int:
    """Return a positive integer parsed from ``value`` or ``default``."""

    if value is None:
        return default
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return default
        try:
            parsed = int(float(candidate))
        except ValueError:
            warnings.warn(
                "%s is not a number; using default for %s" % (candidate, env_var),
                RuntimeWarning,
            )
            return default
    elif isinstance(value, (int, float)):
        parsed = int(value)
    else:
        warnings.warn(
            "Unsupported %s value '%s'; using default." % (env_var, value),
            RuntimeWarning,
        )
        return default
    if parsed <= 0:
        return default
    return parsed


def _parse_positive_float_env(value: str | None, *, env_var: str, default: float) -> float:
    """Return a positive float parsed from ``value`` or ``default``."""

    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError:
        warnings.warn(
            "%s is not a number; using default for %s" % (value, env_var),
            RuntimeWarning,
        )
        return default
    if parsed <= 0:
        return default
    return parsed


def _clean_url(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().rstrip("/")


STREAMLIT_ENV = os.getenv("STREAMLIT_ENV", "development")
DEFAULT_LANGUAGE = os.getenv("LANGUAGE", "fr")

INTAKE_API_URL = _clean_url(os.getenv("INTAKE_API_URL"))
INTAKE_API_KEY = os.getenv("INTAKE_API_KEY", "")
HTTP_TIMEOUT_SECONDS = _parse_positive_float_env(
    os.getenv("HTTP_TIMEOUT_SECONDS"), env_var="HTTP_TIMEOUT_SECONDS", default=10.0
)

AUTOSAVE_QUIET_PERIOD_SECONDS = _parse_positive_float_env(
    os.getenv("AUTOSAVE_QUIET_PERIOD_SECONDS"),
    env_var="AUTOSAVE_QUIET_PERIOD_SECONDS",
    default=2.0,
)

STORAGE_DIR = os.getenv("STORAGE_DIR", ".intake_drafts")
STORAGE_QUOTA_BYTES = _parse_positive_int_env(
    os.getenv("STORAGE_QUOTA_BYTES"), env_var="STORAGE_QUOTA_BYTES", default=5 * 1024 * 1024
)
STORAGE_WARN_BYTES = 4 * 1024 * 1024
USE_MEMORY_STORAGE = _is_truthy_flag(os.getenv("USE_MEMORY_STORAGE"))

DEFAULT_CURRENCY = (os.getenv("DEFAULT_CURRENCY") or "EUR").strip().upper()
FX_API_URL = _clean_url(os.getenv("FX_API_URL"))
GEOCODER_URL = _clean_url(os.getenv("GEOCODER_URL"))
GEOCODER_API_KEY = os.getenv("GEOCODER_API_KEY", "")
PUBLIC_BASE_URL = _clean_url(os.getenv("PUBLIC_BASE_URL")) or "http://localhost:8501"

UPLOAD_WORKERS = _parse_positive_int_env(os.getenv("UPLOAD_WORKERS"), env_var="UPLOAD_WORKERS", default=4)
LOOKUP_WORKERS = _parse_positive_int_env(os.getenv("LOOKUP_WORKERS"), env_var="LOOKUP_WORKERS", default=2)


def remote_backends_enabled() -> bool:
    """Return ``True`` when HTTP clients should talk to the intake API."""

    return bool(INTAKE_API_URL)


__all__ = [
    "AUTOSAVE_QUIET_PERIOD_SECONDS",
    "DEFAULT_CURRENCY",
    "DEFAULT_LANGUAGE",
    "FX_API_URL",
    "GEOCODER_API_KEY",
    "GEOCODER_URL",
    "HTTP_TIMEOUT_SECONDS",
    "INTAKE_API_KEY",
    "INTAKE_API_URL",
    "LOOKUP_WORKERS",
    "PUBLIC_BASE_URL",
    "STORAGE_DIR",
    "STORAGE_QUOTA_BYTES",
    "STORAGE_WARN_BYTES",
    "STREAMLIT_ENV",
    "UPLOAD_WORKERS",
    "USE_MEMORY_STORAGE",
    "remote_backends_enabled",
]
