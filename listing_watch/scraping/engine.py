"""
Target orchestration for the listing polling engine.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from listing_watch.domain.listings import Listing, Target
from listing_watch.domain.monitoring import RunCounters
from listing_watch.notifications.base import Notifier
from listing_watch.scraping.dedupe import DEFAULT_MAX_ENTRIES, DeduplicationStore
from listing_watch.scraping.errors import HardFaultError, ShutdownRequested
from listing_watch.scraping.filters import matches_keywords
from listing_watch.scraping.logging_utils import describe_error, log_event
from listing_watch.scraping.pacing import StopToken
from listing_watch.scraping.rate_limiter import IntervalRateLimiter
from listing_watch.scraping.retry import RetryEngine

logger = logging.getLogger(__name__)

ScreenshotCapturer = Callable[[Listing], bytes | None]

_DEFAULT_CHANNEL_KEY = "default"


class TargetOrchestrator:
    """
    Visits every target once per cycle, in catalog order, and turns fresh
    extraction results into at most one notification per new listing id.

    A listing id is recorded as seen before its notification is attempted,
    so a failed delivery is never retried on a later cycle.
    """

    def __init__(
        self,
        *,
        retry_engine: RetryEngine,
        dedupe: DeduplicationStore,
        notifier: Notifier,
        stop_token: StopToken,
        notification_limiter: IntervalRateLimiter,
        inter_target_delay_seconds: float = 15.0,
        inter_target_jitter_seconds: float = 0.0,
        max_dedupe_entries: int = DEFAULT_MAX_ENTRIES,
        screenshot_capturer: ScreenshotCapturer | None = None,
        counters: RunCounters | None = None,
        rng: random.Random | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._retry_engine = retry_engine
        self._dedupe = dedupe
        self._notifier = notifier
        self._stop_token = stop_token
        self._notification_limiter = notification_limiter
        self._inter_target_delay_seconds = max(0.0, inter_target_delay_seconds)
        self._inter_target_jitter_seconds = max(0.0, inter_target_jitter_seconds)
        self._max_dedupe_entries = max_dedupe_entries
        self._screenshot_capturer = screenshot_capturer
        self._counters = counters or RunCounters()
        self._rng = rng or random.Random()
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._first_run: dict[str, bool] = {}

    @property
    def counters(self) -> RunCounters:
        return self._counters.snapshot()

    def is_first_run(self, target: Target) -> bool:
        return self._first_run.get(target.store_id, True)

    def prepare(self, targets: Sequence[Target]) -> None:
        """
        Load durable dedupe state and derive each target's first-run flag.
        """

        for target in targets:
            self._prepare_target(target)

    def run_cycle(self, targets: Sequence[Target]) -> int:
        """
        Poll every target once. Returns the number of listings notified.

        A failing target never stops the cycle; only HardFaultError and
        ShutdownRequested escape.
        """

        cycle_number = self._counters.cycles_completed + 1
        log_event(logger, logging.INFO, "cycle_started", cycle=cycle_number, targets=len(targets))

        total_notified = 0
        extracted_any = False
        for index, target in enumerate(targets):
            if index > 0:
                self._pause_between_targets()
            try:
                total_notified += self._poll_target(target)
            except (HardFaultError, ShutdownRequested):
                raise
            except Exception as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "target_poll_failed",
                    target=target.name,
                    error=describe_error(exc),
                )
            if self._retry_engine.last_attempt_succeeded:
                extracted_any = True

        self._counters.cycles_completed += 1
        if extracted_any:
            self._counters.last_success_at = self._now()
        log_event(
            logger,
            logging.INFO,
            "cycle_completed",
            cycle=cycle_number,
            notified=total_notified,
            total_notified=self._counters.listings_notified,
        )
        return total_notified

    def _prepare_target(self, target: Target) -> None:
        had_prior_state = self._dedupe.load(target.store_id)
        self._first_run[target.store_id] = not had_prior_state
        if not had_prior_state:
            log_event(
                logger,
                logging.INFO,
                "target_first_run",
                target=target.name,
                store_id=target.store_id,
            )

    def _poll_target(self, target: Target) -> int:
        if target.store_id not in self._first_run:
            self._prepare_target(target)
        if self._dedupe.needs_recovery(target.store_id) and self._dedupe.recover(target.store_id):
            self._first_run[target.store_id] = False

        listings = self._retry_engine.attempt(target)
        if not listings:
            log_event(logger, logging.INFO, "target_poll_empty", target=target.name)
            return 0

        first_run = self._first_run[target.store_id]
        seen_this_poll: set[str] = set()
        new_count = 0
        filtered = 0
        notified = 0

        for listing in listings:
            if listing.id in seen_this_poll:
                continue
            seen_this_poll.add(listing.id)

            if self._dedupe.has(target.store_id, listing.id):
                continue
            self._dedupe.record(target.store_id, listing.id)
            new_count += 1

            if first_run:
                continue
            if not matches_keywords(listing.title, target.required_keywords):
                filtered += 1
                logger.debug("Keyword filter skipped %s: %s", listing.id, listing.title)
                continue
            if self._dispatch(target, listing):
                notified += 1

        self._dedupe.prune(target.store_id, self._max_dedupe_entries)
        self._dedupe.flush(target.store_id)

        if first_run:
            self._first_run[target.store_id] = False
            log_event(
                logger,
                logging.INFO,
                "first_run_baseline_recorded",
                target=target.name,
                baseline=new_count,
            )

        self._counters.listings_notified += notified
        log_event(
            logger,
            logging.INFO,
            "target_poll_completed",
            target=target.name,
            listings=len(listings),
            new=new_count,
            filtered=filtered,
            notified=notified,
            seen_size=self._dedupe.size(target.store_id),
        )
        return notified

    def _dispatch(self, target: Target, listing: Listing) -> bool:
        self._notification_limiter.wait(target.channel or _DEFAULT_CHANNEL_KEY)
        screenshot = self._capture_screenshot(target, listing)
        try:
            delivered = self._notifier.notify_new_listing(target, listing, screenshot=screenshot)
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "listing_notification_failed",
                target=target.name,
                listing_id=listing.id,
                error=describe_error(exc),
            )
            return False

        if not delivered:
            log_event(
                logger,
                logging.WARNING,
                "listing_notification_not_delivered",
                target=target.name,
                listing_id=listing.id,
            )
        return delivered

    def _capture_screenshot(self, target: Target, listing: Listing) -> bytes | None:
        if self._screenshot_capturer is None:
            return None
        try:
            return self._screenshot_capturer(listing)
        except (HardFaultError, ShutdownRequested):
            raise
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "screenshot_failed",
                target=target.name,
                listing_id=listing.id,
                error=describe_error(exc),
            )
            return None

    def _pause_between_targets(self) -> None:
        delay = self._inter_target_delay_seconds
        if self._inter_target_jitter_seconds:
            delay += self._rng.uniform(0.0, self._inter_target_jitter_seconds)
        if delay > 0:
            logger.debug("Pausing %.1fs before next target", delay)
            self._stop_token.sleep(delay)
