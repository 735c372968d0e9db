"""
listing_watch/domain/monitoring.py

Process-wide run bookkeeping and rendering-session lifecycle state.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    STALE = "stale"
    CRASHED = "crashed"
    RESTARTING = "restarting"
    HARD_FAULT = "hard_fault"


@dataclass
class SessionState:
    """
    Lifecycle phase of the shared rendering session.

    `created_at` is a monotonic timestamp; `consecutive_failures` is the
    process-wide counter consulted by the hard-restart circuit breaker.
    """

    phase: SessionPhase = SessionPhase.UNINITIALIZED
    created_at: float | None = None
    consecutive_failures: int = 0

    def snapshot(self) -> "SessionState":
        return replace(self)


@dataclass
class RunCounters:
    """
    Monotonic counters reported by health checks.
    """

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cycles_completed: int = 0
    listings_notified: int = 0
    last_success_at: datetime | None = None

    def snapshot(self) -> "RunCounters":
        return replace(self)

    def uptime_seconds(self, now: datetime | None = None) -> float:
        current = now or datetime.now(timezone.utc)
        return max(0.0, (current - self.started_at).total_seconds())

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        payload["last_success_at"] = (
            self.last_success_at.isoformat() if self.last_success_at is not None else None
        )
        return payload
