"""
Interruptible waits shared by backoff, rate limiting and the poll loop.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TypeVar

from listing_watch.scraping.errors import SessionTimeoutError, ShutdownRequested

T = TypeVar("T")

_POLL_SLICE_SECONDS = 0.25


class StopToken:
    """
    Process-wide stop flag. Every wait in the engine goes through here so a
    shutdown signal aborts it promptly.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def request_stop(self) -> None:
        self._event.set()

    @property
    def stop_requested(self) -> bool:
        return self._event.is_set()

    def raise_if_stopped(self) -> None:
        if self._event.is_set():
            raise ShutdownRequested("Stop requested.")

    def sleep(self, seconds: float) -> None:
        """
        Sleep up to `seconds`, raising ShutdownRequested if stopped meanwhile.
        """

        self.raise_if_stopped()
        if seconds <= 0:
            return
        if self._event.wait(seconds):
            raise ShutdownRequested("Stop requested during wait.")

    def wait_result(self, future: Future[T], *, timeout: float) -> T:
        """
        Wait for a future in short slices so a stop request is noticed.

        Raises SessionTimeoutError when `timeout` elapses first. The future is
        left running; reclaiming whatever it holds is the caller's job.
        """

        remaining = max(0.0, timeout)
        while True:
            self.raise_if_stopped()
            slice_seconds = min(_POLL_SLICE_SECONDS, remaining)
            try:
                return future.result(timeout=slice_seconds)
            except FutureTimeoutError:
                remaining -= slice_seconds
                if remaining <= 0:
                    raise SessionTimeoutError(
                        f"Operation did not finish within {timeout:.1f}s."
                    ) from None
