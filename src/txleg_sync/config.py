"""Centralized configuration for the Texas Legislature bill sync.

All settings live here so they can be overridden by environment variables or a
``.env`` file without touching source code.

**Profile system:** Set ``TXLEG_PROFILE=dev`` (default) or ``TXLEG_PROFILE=prod``
to get sensible defaults for each environment.  Any individual ``TXLEG_*`` var
still overrides the profile value.

These constants are the *defaults* for the operator-editable settings store
(see :mod:`txleg_sync.settings`); a job resolves the effective values once at
creation time.

Usage::

    from txleg_sync.config import FTP_HOST, SESSION_CODE
"""

from __future__ import annotations

import logging
import os
from datetime import date

from dotenv import load_dotenv

# Load .env from current working directory (project root when running scripts / uvicorn)
load_dotenv()

LOGGER = logging.getLogger(__name__)

# ── Profile: one knob for the whole environment ──────────────────────────────

PROFILE: str = os.getenv("TXLEG_PROFILE", "dev").lower().strip()

_PROFILE_DEFAULTS: dict[str, dict[str, str]] = {
    "dev": {
        "TXLEG_DATABASE_URL": "sqlite:///txleg.db",
        "TXLEG_CORS_ORIGINS": "*",
        "TXLEG_BATCH_DELAY_MS": "500",
    },
    "prod": {
        "TXLEG_CORS_ORIGINS": "",  # empty → must be explicitly set
        "TXLEG_BATCH_DELAY_MS": "1000",
    },
}

if PROFILE not in _PROFILE_DEFAULTS:
    LOGGER.warning("Unknown TXLEG_PROFILE=%r, falling back to 'dev'.", PROFILE)
    PROFILE = "dev"

_defaults = _PROFILE_DEFAULTS[PROFILE]


def _env(key: str, fallback: str = "") -> str:
    """Read an env var, falling back to profile default then *fallback*."""
    return os.getenv(key, _defaults.get(key, fallback))


# ── Database ─────────────────────────────────────────────────────────────────
DATABASE_URL: str = _env("TXLEG_DATABASE_URL", "sqlite:///txleg.db").strip() or (
    "sqlite:///txleg.db"
)

# ── Legislative session ──────────────────────────────────────────────────────
# 89th Legislature, Regular Session (convened 2025-01-14).
SESSION_CODE: str = _env("TXLEG_SESSION_CODE", "89R").strip() or "89R"
SESSION_NAME: str = _env("TXLEG_SESSION_NAME", "89th Regular Session").strip()
SESSION_START_DATE: date = date.fromisoformat(_env("TXLEG_SESSION_START_DATE", "2025-01-14"))

# ── Sync behaviour ───────────────────────────────────────────────────────────
VALID_BILL_TYPES: tuple[str, ...] = ("HB", "SB", "HJR", "SJR", "HCR", "SCR")
BILL_TYPES: list[str] = [
    t.strip().upper() for t in _env("TXLEG_BILL_TYPES", "HB,SB").split(",") if t.strip()
]
MAX_BILLS_PER_SYNC: int = int(_env("TXLEG_MAX_BILLS_PER_SYNC", "100"))
BATCH_DELAY_MS: int = int(_env("TXLEG_BATCH_DELAY_MS", "500"))
SYNC_ENABLED: bool = _env("TXLEG_SYNC_ENABLED", "1").lower() in ("1", "true", "yes")
# Bills per processBatch call; sized to fit a ~60s serverless budget.
BATCH_SIZE: int = int(_env("TXLEG_BATCH_SIZE", "20"))
# Sleep BATCH_DELAY_MS after every N bills.
RATE_LIMIT_EVERY: int = int(_env("TXLEG_RATE_LIMIT_EVERY", "5"))

# ── Remote source ────────────────────────────────────────────────────────────
TRANSPORT: str = _env("TXLEG_TRANSPORT", "ftp").lower().strip()
FTP_HOST: str = _env("TXLEG_FTP_HOST", "ftp.legis.state.tx.us").strip()
FTP_TIMEOUT_S: float = float(_env("TXLEG_FTP_TIMEOUT_S", "30"))
# Reconnect if the shared connection has been idle longer than this.
FTP_IDLE_TIMEOUT_S: float = float(_env("TXLEG_FTP_IDLE_TIMEOUT_S", "60"))
HTTP_BASE_URL: str = _env("TXLEG_HTTP_BASE_URL", "https://ftp.legis.state.tx.us").rstrip("/")
HTTP_TIMEOUT_S: float = float(_env("TXLEG_HTTP_TIMEOUT_S", "30"))
USER_AGENT: str = _env(
    "TXLEG_USER_AGENT", "txleg-sync bill sync bot (educational/research)"
).strip()

# ── Security / network ──────────────────────────────────────────────────────
CORS_ORIGINS: str = _env("TXLEG_CORS_ORIGINS").strip()
API_KEY: str = _env("TXLEG_API_KEY").strip()

# ── Production guard ─────────────────────────────────────────────────────────
if PROFILE == "prod":
    if CORS_ORIGINS in ("*", ""):
        LOGGER.warning(
            "TXLEG_PROFILE=prod but TXLEG_CORS_ORIGINS=%r. "
            "Set it to your front-end origin(s) for security.",
            CORS_ORIGINS,
        )
    if not API_KEY:
        LOGGER.warning("TXLEG_PROFILE=prod but TXLEG_API_KEY is empty. Sync API is unprotected.")
