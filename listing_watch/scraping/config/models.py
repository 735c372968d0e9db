"""
Polling engine configuration models.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class WatchSettings:
    """
    Runtime policy parameters for the polling engine.
    """

    targets_path: str
    poll_interval_seconds: float = 420.0
    health_interval_seconds: float = 21600.0
    session_max_age_seconds: float = 3600.0
    max_retries: int = 3
    retry_base_delay_seconds: float = 10.0
    hard_restart_threshold: int = 10
    session_close_timeout_seconds: float = 10.0
    session_start_timeout_seconds: float = 60.0
    navigation_timeout_seconds: float = 60.0
    operation_timeout_seconds: float = 120.0
    inter_target_delay_seconds: float = 15.0
    inter_target_jitter_seconds: float = 10.0
    notification_delay_seconds: float = 1.5
    dedupe_max_entries: int = 2000
    state_dir: str = "data/seen"
    dedupe_database_url: str | None = None
    headless: bool = True
    capture_screenshots: bool = False
    health_status_path: str = "data/health.json"
    browser_executable_path: str | None = None
