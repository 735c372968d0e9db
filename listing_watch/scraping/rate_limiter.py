"""
Keyed minimum-interval rate limiter.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from listing_watch.scraping.pacing import StopToken


class IntervalRateLimiter:
    """
    Enforces a minimum interval between actions sharing one key.

    Keys are notification channels. Waits go through the stop token so a
    shutdown signal interrupts them.
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float,
        stop_token: StopToken,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval_seconds = max(0.0, min_interval_seconds)
        self._stop_token = stop_token
        self._clock = clock
        self._last_action_by_key: dict[str, float] = {}
        self._lock = threading.Lock()

    def wait(self, key: str) -> float:
        """
        Sleep as needed so actions on `key` respect the interval.

        Returns the number of seconds slept.
        """

        with self._lock:
            last_time = self._last_action_by_key.get(key)
            wait_seconds = 0.0
            if last_time is not None:
                wait_seconds = self._min_interval_seconds - (self._clock() - last_time)
            if wait_seconds > 0:
                self._stop_token.sleep(wait_seconds)
            self._last_action_by_key[key] = self._clock()
            return max(0.0, wait_seconds)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._last_action_by_key.clear()
            else:
                self._last_action_by_key.pop(key, None)
