"""
Bounded retry of one target's extraction, with session recovery between
attempts and escalation into the supervisor's hard-fault path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from listing_watch.domain.listings import Listing, Target
from listing_watch.scraping.base import ListingSource
from listing_watch.scraping.errors import HardFaultError, ShutdownRequested
from listing_watch.scraping.logging_utils import describe_error, log_event
from listing_watch.scraping.pacing import StopToken
from listing_watch.scraping.supervisor import SessionSupervisor

if TYPE_CHECKING:
    from listing_watch.notifications.base import Notifier

logger = logging.getLogger(__name__)


def backoff_schedule(base_delay_seconds: float, retries: int) -> list[float]:
    """
    Delays before each retry: `base`, `2 * base`, `4 * base`, ...
    """

    return [base_delay_seconds * (2**index) for index in range(max(0, retries))]


class RetryEngine:
    def __init__(
        self,
        *,
        supervisor: SessionSupervisor,
        source: ListingSource,
        stop_token: StopToken,
        max_retries: int = 3,
        base_delay_seconds: float = 10.0,
        operation_timeout_seconds: float = 120.0,
        notifier: Notifier | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._source = source
        self._stop_token = stop_token
        self._max_retries = max(0, max_retries)
        self._delays = backoff_schedule(base_delay_seconds, self._max_retries)
        self._operation_timeout_seconds = operation_timeout_seconds
        self._notifier = notifier
        self._last_attempt_succeeded = False

    @property
    def last_attempt_succeeded(self) -> bool:
        """
        Whether the most recent `attempt` ended in a successful extraction,
        as opposed to exhausted retries.
        """

        return self._last_attempt_succeeded

    def attempt(self, target: Target) -> list[Listing]:
        """
        Extract listings for `target`, retrying with backoff.

        Returns an empty list once retries are exhausted. HardFaultError and
        ShutdownRequested propagate unchanged.
        """

        self._last_attempt_succeeded = False
        last_error: BaseException | None = None
        for attempt_index in range(self._max_retries + 1):
            if self._supervisor.hard_fault_due():
                self._supervisor.enter_hard_fault(
                    f"{self._supervisor.state.consecutive_failures} consecutive failures "
                    f"while polling {target.name}"
                )

            try:
                listings = self._supervisor.run(
                    lambda session: self._source.fetch_listings(session, target),
                    timeout=self._operation_timeout_seconds,
                )
            except (HardFaultError, ShutdownRequested):
                raise
            except Exception as exc:
                last_error = exc
                self._supervisor.record_failure(exc)
            else:
                self._supervisor.record_success()
                self._last_attempt_succeeded = True
                return listings

            if attempt_index >= self._max_retries:
                break

            delay = self._delays[attempt_index]
            final_retry = attempt_index == self._max_retries - 1
            log_event(
                logger,
                logging.WARNING,
                "target_attempt_failed",
                target=target.name,
                attempt=attempt_index + 1,
                max_attempts=self._max_retries + 1,
                retry_in_seconds=delay,
                error=describe_error(last_error),
            )
            self._stop_token.sleep(delay)

            if self._supervisor.hard_fault_due():
                continue
            self._restart_session(target=target, aggressive=final_retry)

        self._report_exhausted(target=target, error=last_error)
        return []

    def _restart_session(self, *, target: Target, aggressive: bool) -> None:
        try:
            self._supervisor.restart(aggressive=aggressive)
        except (HardFaultError, ShutdownRequested):
            raise
        except Exception as exc:
            # The next attempt starts a session itself and counts any failure.
            log_event(
                logger,
                logging.WARNING,
                "session_restart_failed",
                target=target.name,
                aggressive=aggressive,
                error=describe_error(exc),
            )

    def _report_exhausted(self, *, target: Target, error: BaseException | None) -> None:
        failures = self._supervisor.state.consecutive_failures
        log_event(
            logger,
            logging.ERROR,
            "target_retries_exhausted",
            target=target.name,
            consecutive_failures=failures,
            error=describe_error(error) if error else None,
        )
        if self._notifier is None or failures < self._max_retries:
            return

        message = (
            f"Failed to poll '{target.name}' after {self._max_retries + 1} attempts "
            f"({failures} consecutive failures)."
        )
        if error is not None:
            message = f"{message} Last error: {describe_error(error)}"
        try:
            self._notifier.notify_error(message)
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "error_notification_failed",
                target=target.name,
                error=describe_error(exc),
            )
