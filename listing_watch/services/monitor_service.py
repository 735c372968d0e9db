"""
listing_watch/services/monitor_service.py

Process-level wiring of the polling engine: builds the collaborators from
settings, runs the poll loop, and owns bounded shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from apscheduler.schedulers.background import BackgroundScheduler

from listing_watch.config import get_notifier_settings
from listing_watch.domain.listings import Listing, Target
from listing_watch.domain.monitoring import RunCounters, SessionState
from listing_watch.notifications.base import Notifier
from listing_watch.notifications.discord import DiscordNotifier
from listing_watch.scheduler.jobs import build_scheduler
from listing_watch.scraping.base import ListingSource, SessionFactory
from listing_watch.scraping.config import load_targets, select_targets
from listing_watch.scraping.config.models import WatchSettings
from listing_watch.scraping.dedupe import DeduplicationStore
from listing_watch.scraping.engine import TargetOrchestrator
from listing_watch.scraping.errors import HardFaultError, ShutdownRequested, TargetConfigError
from listing_watch.scraping.logging_utils import describe_error, log_event
from listing_watch.scraping.pacing import StopToken
from listing_watch.scraping.rate_limiter import IntervalRateLimiter
from listing_watch.scraping.retry import RetryEngine
from listing_watch.scraping.storage import (
    DedupeStorage,
    JSONFileDedupeStorage,
    SQLAlchemyDedupeStorage,
)
from listing_watch.scraping.supervisor import SessionSupervisor
from listing_watch.services.health import write_heartbeat

logger = logging.getLogger(__name__)

SCREENSHOT_TIMEOUT_PADDING_SECONDS = 15.0

SchedulerFactory = Callable[..., BackgroundScheduler]


class MonitorService:
    """
    Runs the listing monitor until stopped or hard-faulted.

    `run_forever` returns normally after a stop request and raises
    HardFaultError when the session supervisor gives up; the entry point
    maps those to exit statuses 0 and 1.
    """

    def __init__(
        self,
        *,
        settings: WatchSettings,
        targets: Sequence[Target],
        notifier: Notifier,
        storage: DedupeStorage,
        source: ListingSource,
        session_factory: SessionFactory,
        stop_token: StopToken | None = None,
        scheduler_factory: SchedulerFactory | None = build_scheduler,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not targets:
            raise TargetConfigError("No enabled targets to monitor.")

        self._settings = settings
        self._targets = list(targets)
        self._notifier = notifier
        self._storage = storage
        self._source = source
        self._stop_token = stop_token or StopToken()
        self._scheduler_factory = scheduler_factory
        self._scheduler: BackgroundScheduler | None = None
        self._clock = clock
        self._prepared = False
        self._closed = False

        self._supervisor = SessionSupervisor(
            factory=session_factory,
            stop_token=self._stop_token,
            max_age_seconds=settings.session_max_age_seconds,
            hard_restart_threshold=settings.hard_restart_threshold,
            close_timeout_seconds=settings.session_close_timeout_seconds,
            start_timeout_seconds=settings.session_start_timeout_seconds,
        )
        retry_engine = RetryEngine(
            supervisor=self._supervisor,
            source=source,
            stop_token=self._stop_token,
            max_retries=settings.max_retries,
            base_delay_seconds=settings.retry_base_delay_seconds,
            operation_timeout_seconds=settings.operation_timeout_seconds,
            notifier=notifier,
        )
        self._orchestrator = TargetOrchestrator(
            retry_engine=retry_engine,
            dedupe=DeduplicationStore(storage=storage),
            notifier=notifier,
            stop_token=self._stop_token,
            notification_limiter=IntervalRateLimiter(
                min_interval_seconds=settings.notification_delay_seconds,
                stop_token=self._stop_token,
            ),
            inter_target_delay_seconds=settings.inter_target_delay_seconds,
            inter_target_jitter_seconds=settings.inter_target_jitter_seconds,
            max_dedupe_entries=settings.dedupe_max_entries,
            screenshot_capturer=self._capture_screenshot if settings.capture_screenshots else None,
        )

    @classmethod
    def from_settings(
        cls,
        settings: WatchSettings,
        *,
        target_names: Sequence[str] | None = None,
    ) -> "MonitorService":
        """
        Build the production service: Playwright rendering of eBay search
        pages, Discord notifications and the configured dedupe backend.
        """

        from listing_watch.scraping.browser import PlaywrightSessionFactory
        from listing_watch.scraping.ebay import EbayListingSource

        notifier_settings = get_notifier_settings()
        targets = select_targets(
            load_targets(
                config_path=settings.targets_path,
                default_channel=notifier_settings.default_webhook_url,
            ),
            target_names,
        )
        return cls(
            settings=settings,
            targets=targets,
            notifier=DiscordNotifier(
                default_webhook_url=notifier_settings.default_webhook_url,
                alert_webhook_url=notifier_settings.alert_webhook_url,
                timeout_seconds=notifier_settings.timeout_seconds,
                username=notifier_settings.username,
            ),
            storage=build_dedupe_storage(settings),
            source=EbayListingSource(),
            session_factory=PlaywrightSessionFactory(
                headless=settings.headless,
                navigation_timeout_seconds=settings.navigation_timeout_seconds,
                executable_path=settings.browser_executable_path,
            ),
        )

    @property
    def targets(self) -> list[Target]:
        return list(self._targets)

    @property
    def counters(self) -> RunCounters:
        return self._orchestrator.counters

    @property
    def session_state(self) -> SessionState:
        return self._supervisor.state

    def request_stop(self) -> None:
        """
        Ask the loop to stop. Safe to call from a signal handler.
        """

        self._stop_token.request_stop()

    def run_once(self) -> int:
        """
        Run a single poll cycle. Returns the number of listings notified.

        On HardFaultError the heartbeat is written and an operator alert is
        sent before the error propagates.
        """

        self._prepare()
        try:
            notified = self._orchestrator.run_cycle(self._targets)
        except HardFaultError as exc:
            self._report_hard_fault(exc)
            raise
        self._write_heartbeat()
        return notified

    def run_forever(self) -> None:
        self._prepare()
        self._write_heartbeat()
        self._announce_startup()
        self._start_scheduler()

        try:
            while True:
                cycle_started = self._clock()
                try:
                    self.run_once()
                except (HardFaultError, ShutdownRequested):
                    raise
                except Exception as exc:
                    log_event(
                        logger,
                        logging.ERROR,
                        "cycle_failed",
                        error=describe_error(exc),
                    )

                elapsed = self._clock() - cycle_started
                wait_seconds = max(0.0, self._settings.poll_interval_seconds - elapsed)
                log_event(
                    logger,
                    logging.INFO,
                    "next_cycle_scheduled",
                    cycle_seconds=round(elapsed, 1),
                    wait_seconds=round(wait_seconds, 1),
                )
                self._stop_token.sleep(wait_seconds)
        except ShutdownRequested:
            log_event(logger, logging.INFO, "monitor_stop_requested")

    def close(self) -> None:
        """
        Stop the scheduler, release the rendering session and storage.
        Safe to call more than once.
        """

        if self._closed:
            return
        self._closed = True
        self._stop_token.request_stop()

        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        try:
            self._supervisor.shutdown()
        finally:
            self._storage.close()
            close_notifier = getattr(self._notifier, "close", None)
            if callable(close_notifier):
                close_notifier()
        log_event(logger, logging.INFO, "monitor_closed", counters=self.counters.to_dict())

    def _prepare(self) -> None:
        if self._prepared:
            return
        self._orchestrator.prepare(self._targets)
        self._prepared = True
        log_event(
            logger,
            logging.INFO,
            "monitor_prepared",
            targets=[target.name for target in self._targets],
            poll_interval_seconds=self._settings.poll_interval_seconds,
        )

    def _announce_startup(self) -> None:
        try:
            self._notifier.notify_startup(self._targets)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "startup_notification_failed",
                error=describe_error(exc),
            )

    def _start_scheduler(self) -> None:
        if self._scheduler_factory is None or self._scheduler is not None:
            return
        self._scheduler = self._scheduler_factory(
            notifier=self._notifier,
            counters_provider=lambda: self.counters,
            session_state_provider=lambda: self.session_state,
            health_interval_seconds=self._settings.health_interval_seconds,
        )
        self._scheduler.start()

    def _report_hard_fault(self, exc: HardFaultError) -> None:
        log_event(logger, logging.CRITICAL, "monitor_hard_fault", error=describe_error(exc))
        self._write_heartbeat()
        self._notify_error(
            f"Hard fault: {exc}. Rendering processes were killed and the "
            "monitor is exiting for a full restart."
        )

    def _notify_error(self, message: str) -> None:
        try:
            self._notifier.notify_error(message)
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "error_notification_failed",
                error=describe_error(exc),
            )

    def _write_heartbeat(self) -> None:
        try:
            write_heartbeat(
                self._settings.health_status_path,
                self.counters,
                self.session_state,
                poll_interval_seconds=self._settings.poll_interval_seconds,
            )
        except OSError as exc:
            log_event(
                logger,
                logging.WARNING,
                "heartbeat_write_failed",
                path=self._settings.health_status_path,
                error=describe_error(exc),
            )

    def _capture_screenshot(self, listing: Listing) -> bytes | None:
        return self._supervisor.run(
            lambda session: self._source.capture_screenshot(session, listing.url),
            timeout=self._settings.navigation_timeout_seconds + SCREENSHOT_TIMEOUT_PADDING_SECONDS,
        )


def build_dedupe_storage(settings: WatchSettings) -> DedupeStorage:
    if settings.dedupe_database_url:
        return SQLAlchemyDedupeStorage.from_url(settings.dedupe_database_url)
    return JSONFileDedupeStorage(state_dir=settings.state_dir)
