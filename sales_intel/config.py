"""Centralized configuration for the sales intelligence agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/sales-intel/<VARIABLE_NAME>``.

Per-entity prompts and iteration caps are *not* configured here; they live in
the ``agent_configs`` table and are read through
:class:`sales_intel.jobs.config_provider.AgentConfigProvider`.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


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
        resp = ssm.get_parameter(Name=f"/sales-intel/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /sales-intel/{name} (AWS)."
    )


def _optional_env(name: str) -> str | None:
    """Like ``_require_env`` but returns ``None`` instead of raising."""
    try:
        return _require_env(name)
    except OSError:
        return None


def _split_args(raw: str | None, default: list[str]) -> list[str]:
    return raw.split() if raw else default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
MODEL_MAX_TOKENS: int = int(os.getenv("MODEL_MAX_TOKENS", "8192"))

# ── CRM (HubSpot) ───────────────────────────────────────────────────
HUBSPOT_ACCESS_TOKEN: str = _require_env("HUBSPOT_ACCESS_TOKEN")
HUBSPOT_BASE_URL: str = os.getenv("HUBSPOT_BASE_URL", "https://api.hubapi.com")
HUBSPOT_MCP_COMMAND: str = os.getenv("HUBSPOT_MCP_COMMAND", "npx")
HUBSPOT_MCP_ARGS: list[str] = _split_args(
    os.getenv("HUBSPOT_MCP_ARGS"), ["-y", "@hubspot/mcp-server"],
)

# ── Knowledge base (ATLAS MCP) ──────────────────────────────────────
ATLAS_MCP_COMMAND: str = os.getenv("ATLAS_MCP_COMMAND", "npx")
ATLAS_MCP_ARGS: list[str] = _split_args(
    os.getenv("ATLAS_MCP_ARGS"), ["-y", "supergateway", "--sse", os.getenv("ATLAS_SSE_URL", "")],
)
MCP_INIT_TIMEOUT_SECONDS: float = float(os.getenv("MCP_INIT_TIMEOUT_SECONDS", "30"))

# ── Web research (Firecrawl, optional) ──────────────────────────────
FIRECRAWL_API_KEY: str | None = _optional_env("FIRECRAWL_API_KEY")
FIRECRAWL_BASE_URL: str = os.getenv("FIRECRAWL_BASE_URL", "https://api.firecrawl.dev/v1")

# ── Persistence ─────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./intelligence.db")

# ── Job execution ───────────────────────────────────────────────────
JOB_MAX_RETRIES: int = int(os.getenv("JOB_MAX_RETRIES", "3"))
JOB_RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("JOB_RETRY_BASE_DELAY_SECONDS", "30"))
JOB_WORKER_THREADS: int = int(os.getenv("JOB_WORKER_THREADS", "2"))
CONFIG_CACHE_TTL_SECONDS: float = float(os.getenv("CONFIG_CACHE_TTL_SECONDS", "60"))
DEFAULT_MAX_ITERATIONS: int = int(os.getenv("DEFAULT_MAX_ITERATIONS", "10"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
