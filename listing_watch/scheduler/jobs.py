"""
listing_watch/scheduler/jobs.py

APScheduler-based trigger for periodic health reports.

Schedule
--------
  health_report: every ``WATCH_HEALTH_INTERVAL_SECONDS`` (default 6 hours)

The poll loop runs in the main thread and is not scheduled here.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it after startup notification; shut it down during service close.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from listing_watch.domain.monitoring import RunCounters, SessionState
from listing_watch.notifications.base import Notifier

logger = logging.getLogger(__name__)

HEALTH_JOB_ID = "health_report"


def run_health_report(
    notifier: Notifier,
    counters_provider: Callable[[], RunCounters],
    session_state_provider: Callable[[], SessionState],
) -> None:
    """
    Send one health report. Failures are logged; the next run tries again.
    """
    counters = counters_provider()
    session_state = session_state_provider()
    logger.info(
        "Scheduler: health_report cycles=%s notified=%s phase=%s",
        counters.cycles_completed,
        counters.listings_notified,
        session_state.phase.value,
    )
    try:
        delivered = notifier.notify_health(counters, session_state)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: health_report failed: %s", exc)
        return
    if not delivered:
        logger.warning("Scheduler: health_report was not delivered")


def build_scheduler(
    *,
    notifier: Notifier,
    counters_provider: Callable[[], RunCounters],
    session_state_provider: Callable[[], SessionState],
    health_interval_seconds: float,
) -> BackgroundScheduler:
    """
    Build the health-report scheduler.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=False)`` at the
    appropriate lifecycle points.
    """
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_health_report,
        trigger="interval",
        seconds=health_interval_seconds,
        args=[notifier, counters_provider, session_state_provider],
        id=HEALTH_JOB_ID,
        name="Periodic health report",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=600,
    )
    logger.info(
        "Scheduler: registered %s every %.0fs", HEALTH_JOB_ID, health_interval_seconds
    )
    return scheduler
