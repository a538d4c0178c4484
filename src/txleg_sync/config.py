"""Centralized configuration for the TXLeg bill sync service.

All settings live here so they can be overridden by environment variables or a
``.env`` file without touching source code.

**Profile system:** Set ``TXLEG_PROFILE=dev`` (default) or ``TXLEG_PROFILE=prod``
to get sensible defaults for each environment.  Any individual ``TXLEG_*`` var
still overrides the profile value.

Operator-tunable sync settings (session code, max bills, batch delay, ...) are
*not* read here -- they come from the settings store in
:mod:`txleg_sync.settings` and are re-read on every trigger.

Usage::

    from txleg_sync.config import BASE_URL, USER_AGENT

    url = f"{BASE_URL}BillLookup/History.aspx?LegSess=89R&Bill=HB1"
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from current working directory (project root when running uvicorn)
load_dotenv()

LOGGER = logging.getLogger(__name__)

# ── Profile: one knob for the whole environment ──────────────────────────────
# "dev" = lightweight local mode, "prod" = production-ready defaults.
# Individual vars always override the profile.

PROFILE: str = os.getenv("TXLEG_PROFILE", "dev").lower().strip()

_PROFILE_DEFAULTS: dict[str, dict[str, str]] = {
    "dev": {
        "TXLEG_CORS_ORIGINS": "*",
        "TXLEG_REQUEST_TIMEOUT": "20",
        "TXLEG_BATCH_SIZE": "20",
    },
    "prod": {
        "TXLEG_CORS_ORIGINS": "",  # empty → must be explicitly set
        "TXLEG_REQUEST_TIMEOUT": "30",
        "TXLEG_BATCH_SIZE": "20",
    },
}

if PROFILE not in _PROFILE_DEFAULTS:
    LOGGER.warning("Unknown TXLEG_PROFILE=%r, falling back to 'dev'.", PROFILE)
    PROFILE = "dev"

_defaults = _PROFILE_DEFAULTS[PROFILE]


def _env(key: str, fallback: str = "") -> str:
    """Read an env var, falling back to profile default then *fallback*."""
    return os.getenv(key, _defaults.get(key, fallback))


# ── External source ──────────────────────────────────────────────────────────
BASE_URL: str = _env("TXLEG_BASE_URL", "https://capitol.texas.gov/").rstrip("/") + "/"
USER_AGENT: str = _env("TXLEG_USER_AGENT", "TexLegAI Bill Sync Bot (educational/research)")
REQUEST_TIMEOUT: float = float(_env("TXLEG_REQUEST_TIMEOUT", "20"))

# ── Directories & files ──────────────────────────────────────────────────────
DATA_DIR: Path = Path(_env("TXLEG_DATA_DIR", "data"))
SETTINGS_FILE: Path = Path(_env("TXLEG_SETTINGS_FILE", str(DATA_DIR / "settings.json")))
JOBS_FILE: Path = DATA_DIR / "sync_jobs.json"
BILLS_FILE: Path = DATA_DIR / "bills.json"

# ── Batch processing ─────────────────────────────────────────────────────────
# Bills handled per controller step (keeps a single poller call short).
BATCH_SIZE: int = int(_env("TXLEG_BATCH_SIZE", "20"))

# ── Security / network ──────────────────────────────────────────────────────
CORS_ORIGINS: str = _env("TXLEG_CORS_ORIGINS").strip()
API_KEY: str = _env("TXLEG_API_KEY").strip()

# ── Production guard: warn if CORS is wide-open or API_KEY is missing ────────
if PROFILE == "prod":
    if CORS_ORIGINS in ("*", ""):
        LOGGER.warning(
            "TXLEG_PROFILE=prod but TXLEG_CORS_ORIGINS=%r. "
            "Set it to your front-end origin(s) for security.",
            CORS_ORIGINS,
        )
    if not API_KEY:
        LOGGER.warning("TXLEG_PROFILE=prod but TXLEG_API_KEY is empty. Sync endpoints are open.")
