"""
listing_watch/config.py

Process-level configuration helpers shared by the entry points.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def load_env_files() -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    for filename in (".env", ".env.local"):
        env_path = project_root() / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading settings.
    """

    load_env_files()


def get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def resolve_project_path(raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (project_root() / candidate).resolve()


@dataclass(frozen=True)
class NotifierSettings:
    """
    Discord webhook channels used by the notifier.
    """

    default_webhook_url: str | None = None
    alert_webhook_url: str | None = None
    timeout_seconds: float = 10.0
    username: str = "Listing Watch"


@lru_cache(maxsize=1)
def get_notifier_settings() -> NotifierSettings:
    """
    Return cached notifier settings from environment variables.
    """

    default_url = get_optional_str_env("DISCORD_WEBHOOK_URL")
    return NotifierSettings(
        default_webhook_url=default_url,
        alert_webhook_url=get_optional_str_env("DISCORD_ALERT_WEBHOOK_URL") or default_url,
        timeout_seconds=max(1.0, get_float_env("DISCORD_TIMEOUT_SECONDS", 10.0)),
        username=get_str_env("DISCORD_USERNAME", "Listing Watch"),
    )


def configure_logging() -> None:
    """
    Configure root logging once for the monitor process.
    """

    log_level = get_str_env("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
