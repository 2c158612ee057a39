"""Centralized configuration for the Chief of Staff assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/chief-of-staff/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

SSM_PREFIX = "/chief-of-staff"


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _get_secret(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _get_secret(name)
    if value:
        return value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
# Optional: without it the chat endpoint reports "AI service not configured".
ANTHROPIC_API_KEY: str | None = _get_secret("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-20250514")
MAX_OUTPUT_TOKENS: int = int(os.getenv("MAX_OUTPUT_TOKENS", "4096"))
MAX_TOOL_ITERATIONS: int = int(os.getenv("MAX_TOOL_ITERATIONS", "10"))

# ── Encryption at rest ──────────────────────────────────────────────
ENCRYPTION_KEY: str = _require_env("ENCRYPTION_KEY")

# ── Tokens & provider HTTP calls ────────────────────────────────────
TOKEN_REFRESH_MARGIN_SECONDS: int = int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "300"))
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

# ── OAuth clients ───────────────────────────────────────────────────
GOOGLE_CLIENT_ID: str = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET: str = _get_secret("GOOGLE_CLIENT_SECRET") or ""
ASANA_CLIENT_ID: str = os.getenv("ASANA_CLIENT_ID", "")
ASANA_CLIENT_SECRET: str = _get_secret("ASANA_CLIENT_SECRET") or ""

APP_URL: str = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
SETTINGS_REDIRECT_URL: str = os.getenv(
    "SETTINGS_REDIRECT_URL", "http://localhost:3000/settings",
)

# ── Storage ─────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./chief_of_staff.db")

# ── Identity gateway ────────────────────────────────────────────────
# The identity provider sits in front of this service and forwards the
# verified user id in AUTH_USER_HEADER.
AUTH_USER_HEADER: str = os.getenv("AUTH_USER_HEADER", "X-User-ID")
AUTH_GATEWAY_SECRET: str | None = _get_secret("AUTH_GATEWAY_SECRET")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
