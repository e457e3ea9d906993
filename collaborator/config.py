"""Centralized configuration for the Collaborator agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/collaborator/<VARIABLE_NAME>``.

Nothing here raises at import time.  ``validate_environment()`` is called
once at start-up and reports *every* missing setting in one error.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from collaborator.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

REQUIRED_SETTINGS = (
    "ANTHROPIC_API_KEY",
    "AAD_APP_CLIENT_ID",
    "AAD_APP_CLIENT_SECRET",
    "AAD_APP_TENANT_ID",
)


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/collaborator/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _resolve_secret(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None`` if unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str | None = _resolve_secret("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")

# ── Identity / Graph ────────────────────────────────────────────────
AAD_APP_CLIENT_ID: str | None = _resolve_secret("AAD_APP_CLIENT_ID")
AAD_APP_CLIENT_SECRET: str | None = _resolve_secret("AAD_APP_CLIENT_SECRET")
AAD_APP_TENANT_ID: str | None = _resolve_secret("AAD_APP_TENANT_ID")
AUTHORITY_HOST: str = os.getenv("AUTHORITY_HOST", "https://login.microsoftonline.com")
GRAPH_BASE_URL: str = os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0")
GRAPH_SCOPE: str = os.getenv("GRAPH_SCOPE", "https://graph.microsoft.com/.default")
BOT_EMAIL_ADDRESS: str = os.getenv("BOT_EMAIL_ADDRESS", "collaborator@example.com")

# ── Storage / memory ────────────────────────────────────────────────
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
CONVERSATIONS_DB_PATH: str = os.getenv("CONVERSATIONS_DB_PATH", "data/conversations.db")
RECENT_MEMORY_LIMIT: int = _int_env("RECENT_MEMORY_LIMIT", 20)

# ── Router ──────────────────────────────────────────────────────────
CAPABILITY_TIMEOUT_SECONDS: int = _int_env("CAPABILITY_TIMEOUT_SECONDS", 60)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")


def validate_environment() -> None:
    """Raise ``ConfigurationError`` naming every missing required setting."""
    current = globals()
    missing = [name for name in REQUIRED_SETTINGS if not current.get(name)]
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
        raise ConfigurationError(missing)

    if STORAGE_BACKEND not in ("sqlite", "memory"):
        logger.warning(
            "Unknown STORAGE_BACKEND %r, using sqlite", STORAGE_BACKEND,
        )
    logger.debug("Environment validation passed (storage: %s)", STORAGE_BACKEND)
