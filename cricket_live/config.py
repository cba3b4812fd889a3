# cricket_live/config.py
from __future__ import annotations

import os
from dotenv import load_dotenv

# Load .env from project root
load_dotenv()


def _get_env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, str(default))
    try:
        return int(raw)
    except ValueError:
        return default


# -------------------------
# Persistent store
# -------------------------
DATABASE_URL: str = _get_env("DATABASE_URL", "sqlite:///./cricket_live.db")

# Upper bound on how long a write waits for a lock before it fails
STORE_TIMEOUT_SECONDS: int = _get_env_int("STORE_TIMEOUT_SECONDS", 10)

SQL_ECHO: bool = _get_env("SQL_ECHO", "0") == "1"


# -------------------------
# Match defaults
# -------------------------
DEFAULT_OVERS_LIMIT: int = _get_env_int("DEFAULT_OVERS_LIMIT", 20)
DEFAULT_FORMAT: str = _get_env("DEFAULT_FORMAT", "T20").upper()

SUPPORTED_FORMATS = ("T20", "ODI")


# -------------------------
# Read-model cache TTLs
# -------------------------
LIVE_SCORE_CACHE_TTL_SECONDS: int = _get_env_int("LIVE_SCORE_CACHE_TTL_SECONDS", 10)
LIVE_MATCHES_CACHE_TTL_SECONDS: int = _get_env_int("LIVE_MATCHES_CACHE_TTL_SECONDS", 5)


# -------------------------
# Logging
# -------------------------
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO").upper()
LOG_JSON: bool = _get_env("LOG_JSON", "1") == "1"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set")

    if STORE_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("STORE_TIMEOUT_SECONDS must be positive")

    if DEFAULT_OVERS_LIMIT <= 0:
        raise RuntimeError("DEFAULT_OVERS_LIMIT must be positive")

    if DEFAULT_FORMAT not in SUPPORTED_FORMATS:
        raise RuntimeError(f"DEFAULT_FORMAT must be one of {', '.join(SUPPORTED_FORMATS)}")

    # TTL validation
    if LIVE_SCORE_CACHE_TTL_SECONDS <= 0:
        raise RuntimeError("LIVE_SCORE_CACHE_TTL_SECONDS must be positive")

    if LIVE_MATCHES_CACHE_TTL_SECONDS <= 0:
        raise RuntimeError("LIVE_MATCHES_CACHE_TTL_SECONDS must be positive")

    if LOG_LEVEL not in _LOG_LEVELS:
        raise RuntimeError(f"LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}")
