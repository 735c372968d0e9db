"""
Heartbeat file written after every poll cycle and read by the container
health check.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from listing_watch.domain.monitoring import RunCounters, SessionState
from listing_watch.scraping.storage.json_storage import atomic_write_json

STALE_AFTER_INTERVALS = 3


def build_heartbeat(
    counters: RunCounters,
    session_state: SessionState,
    *,
    poll_interval_seconds: float,
    now: datetime | None = None,
) -> dict[str, Any]:
    current = now or datetime.now(timezone.utc)
    return {
        "written_at": current.isoformat(),
        "poll_interval_seconds": poll_interval_seconds,
        "uptime_seconds": round(counters.uptime_seconds(current), 1),
        "counters": counters.to_dict(),
        "session": {
            "phase": session_state.phase.value,
            "consecutive_failures": session_state.consecutive_failures,
        },
    }


def write_heartbeat(
    path: str | Path,
    counters: RunCounters,
    session_state: SessionState,
    *,
    poll_interval_seconds: float,
    now: datetime | None = None,
) -> None:
    atomic_write_json(
        Path(path),
        build_heartbeat(
            counters,
            session_state,
            poll_interval_seconds=poll_interval_seconds,
            now=now,
        ),
    )


@dataclass(frozen=True)
class HeartbeatStatus:
    healthy: bool
    reason: str
    age_seconds: float | None = None


def check_heartbeat(
    path: str | Path,
    *,
    poll_interval_seconds: float | None = None,
    now: datetime | None = None,
) -> HeartbeatStatus:
    """
    Healthy when the heartbeat is younger than three poll intervals and the
    session is not in hard fault.
    """

    heartbeat_path = Path(path)
    if not heartbeat_path.exists():
        return HeartbeatStatus(healthy=False, reason="heartbeat file missing")

    try:
        payload = json.loads(heartbeat_path.read_text(encoding="utf-8"))
        written_at = datetime.fromisoformat(payload["written_at"])
    except (OSError, ValueError, KeyError, TypeError) as exc:
        return HeartbeatStatus(healthy=False, reason=f"unreadable heartbeat: {exc}")

    interval = poll_interval_seconds or float(payload.get("poll_interval_seconds") or 0)
    if interval <= 0:
        return HeartbeatStatus(healthy=False, reason="unknown poll interval")

    current = now or datetime.now(timezone.utc)
    if written_at.tzinfo is None:
        written_at = written_at.replace(tzinfo=timezone.utc)
    age_seconds = (current - written_at).total_seconds()

    if payload.get("session", {}).get("phase") == "hard_fault":
        return HeartbeatStatus(healthy=False, reason="session in hard fault", age_seconds=age_seconds)
    if age_seconds > interval * STALE_AFTER_INTERVALS:
        return HeartbeatStatus(
            healthy=False,
            reason=f"heartbeat is {age_seconds:.0f}s old",
            age_seconds=age_seconds,
        )
    return HeartbeatStatus(healthy=True, reason="ok", age_seconds=age_seconds)
