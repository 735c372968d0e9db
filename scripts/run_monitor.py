"""
Run the listing monitor from CLI.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal

from listing_watch.config import configure_logging
from listing_watch.scraping.config import get_watch_settings
from listing_watch.scraping.errors import HardFaultError, ShutdownRequested, TargetConfigError
from listing_watch.services.monitor_service import MonitorService

logger = logging.getLogger("listing_watch.run_monitor")


def main() -> int:
    parser = argparse.ArgumentParser(description="Poll marketplace searches and notify on new listings.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle and exit.",
    )
    parser.add_argument(
        "--target",
        dest="targets",
        action="append",
        default=None,
        help="Restrict monitoring to this target name (repeatable).",
    )
    args = parser.parse_args()

    configure_logging()
    settings = get_watch_settings()
    try:
        service = MonitorService.from_settings(settings, target_names=args.targets)
    except (FileNotFoundError, TargetConfigError) as exc:
        logger.error("Unable to start monitor: %s", exc)
        return 2

    def _handle_signal(signum: int, _frame: object) -> None:
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        service.request_stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if args.once:
            notified = service.run_once()
            print(json.dumps({"notified": notified, **service.counters.to_dict()}, indent=2))
        else:
            service.run_forever()
    except HardFaultError:
        return 1
    except ShutdownRequested:
        logger.info("Stopped during cycle")
    finally:
        service.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
