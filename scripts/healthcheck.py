"""
Container health check for the listing monitor heartbeat.
"""

from __future__ import annotations

import sys

from listing_watch.scraping.config import get_watch_settings
from listing_watch.services.health import check_heartbeat


def main() -> int:
    settings = get_watch_settings()
    status = check_heartbeat(
        settings.health_status_path,
        poll_interval_seconds=settings.poll_interval_seconds,
    )
    if not status.healthy:
        print(f"unhealthy: {status.reason}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
