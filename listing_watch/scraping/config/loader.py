"""
Environment + JSON config loader for the polling engine.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Sequence
from functools import lru_cache

from listing_watch.config import (
    get_bool_env,
    get_float_env,
    get_int_env,
    get_optional_str_env,
    get_str_env,
    resolve_project_path,
)
from listing_watch.domain.listings import Target
from listing_watch.scraping.config.models import WatchSettings
from listing_watch.scraping.errors import TargetConfigError

_SLUG_REGEX = re.compile(r"[^a-z0-9]+")


@lru_cache(maxsize=1)
def get_watch_settings() -> WatchSettings:
    """
    Return cached polling settings from environment variables.
    """

    return WatchSettings(
        targets_path=str(
            resolve_project_path(get_str_env("WATCH_TARGETS_PATH", "config/targets.json"))
        ),
        poll_interval_seconds=max(30.0, get_float_env("WATCH_POLL_INTERVAL_SECONDS", 420.0)),
        health_interval_seconds=max(60.0, get_float_env("WATCH_HEALTH_INTERVAL_SECONDS", 21600.0)),
        session_max_age_seconds=max(60.0, get_float_env("WATCH_SESSION_MAX_AGE_SECONDS", 3600.0)),
        max_retries=max(0, get_int_env("WATCH_MAX_RETRIES", 3)),
        retry_base_delay_seconds=max(0.0, get_float_env("WATCH_RETRY_BASE_DELAY_SECONDS", 10.0)),
        hard_restart_threshold=max(1, get_int_env("WATCH_HARD_RESTART_THRESHOLD", 10)),
        session_close_timeout_seconds=max(
            1.0,
            get_float_env("WATCH_SESSION_CLOSE_TIMEOUT_SECONDS", 10.0),
        ),
        session_start_timeout_seconds=max(
            5.0,
            get_float_env("WATCH_SESSION_START_TIMEOUT_SECONDS", 60.0),
        ),
        navigation_timeout_seconds=max(
            5.0,
            get_float_env("WATCH_NAVIGATION_TIMEOUT_SECONDS", 60.0),
        ),
        operation_timeout_seconds=max(
            10.0,
            get_float_env("WATCH_OPERATION_TIMEOUT_SECONDS", 120.0),
        ),
        inter_target_delay_seconds=max(0.0, get_float_env("WATCH_INTER_TARGET_DELAY_SECONDS", 15.0)),
        inter_target_jitter_seconds=max(
            0.0,
            get_float_env("WATCH_INTER_TARGET_JITTER_SECONDS", 10.0),
        ),
        notification_delay_seconds=max(
            0.0,
            get_float_env("WATCH_NOTIFICATION_DELAY_SECONDS", 1.5),
        ),
        dedupe_max_entries=max(1, get_int_env("WATCH_DEDUPE_MAX_ENTRIES", 2000)),
        state_dir=str(resolve_project_path(get_str_env("WATCH_STATE_DIR", "data/seen"))),
        dedupe_database_url=get_optional_str_env("WATCH_DEDUPE_DATABASE_URL"),
        headless=get_bool_env("WATCH_HEADLESS", True),
        capture_screenshots=get_bool_env("WATCH_CAPTURE_SCREENSHOTS", False),
        health_status_path=str(
            resolve_project_path(get_str_env("WATCH_HEALTH_STATUS_PATH", "data/health.json"))
        ),
        browser_executable_path=get_optional_str_env("WATCH_BROWSER_EXECUTABLE_PATH"),
    )


def load_targets(
    *,
    config_path: str,
    default_channel: str | None = None,
) -> list[Target]:
    """
    Load enabled targets from a JSON catalog, in file order.
    """

    path = resolve_project_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Target catalog not found: {path}")

    try:
        raw_data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise TargetConfigError(f"Target catalog is not valid JSON: {path}") from exc

    entries = raw_data.get("targets", []) if isinstance(raw_data, dict) else raw_data
    if not isinstance(entries, list):
        raise TargetConfigError("Invalid target catalog: 'targets' must be a list.")

    parsed: list[Target] = []
    seen_store_ids: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if not _optional_bool(entry.get("enabled"), True):
            continue

        name = _optional_str(entry.get("name"))
        query = _optional_str(entry.get("query"))
        if not name or not query:
            continue

        store_id = _optional_str(entry.get("store_id")) or slugify(name)
        if not store_id:
            raise TargetConfigError(f"Target '{name}' has no usable store_id.")
        if store_id in seen_store_ids:
            raise TargetConfigError(f"Duplicate store_id '{store_id}' in target catalog.")
        seen_store_ids.add(store_id)

        parsed.append(
            Target(
                name=name,
                query=query,
                store_id=store_id,
                category_id=_optional_str(entry.get("category_id")),
                required_keywords=_normalize_keywords(entry.get("required_keywords")),
                channel=_resolve_channel(entry, default_channel=default_channel),
            )
        )

    return parsed


def select_targets(targets: list[Target], names: Sequence[str] | None) -> list[Target]:
    if not names:
        return targets

    normalized = {item.strip().lower() for item in names if item.strip()}
    if not normalized:
        return targets
    return [target for target in targets if target.name.lower() in normalized]


def slugify(value: str) -> str:
    return _SLUG_REGEX.sub("-", value.strip().lower()).strip("-")


def _resolve_channel(entry: dict[str, object], *, default_channel: str | None) -> str | None:
    literal = _optional_str(entry.get("webhook_url"))
    if literal:
        return literal

    env_name = _optional_str(entry.get("webhook_env"))
    if env_name:
        value = os.getenv(env_name, "").strip()
        if value:
            return value
    return default_channel


def _normalize_keywords(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return ()
    return tuple(
        item.strip()
        for item in value
        if isinstance(item, str) and item.strip()
    )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _optional_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default
