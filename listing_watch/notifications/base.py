"""
Notification dispatcher contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from listing_watch.domain.listings import Listing, Target
from listing_watch.domain.monitoring import RunCounters, SessionState


class Notifier(ABC):
    """
    Best-effort delivery of operator-facing messages.

    Every method reports delivery success as a bool and never raises for a
    failed delivery; callers do not retry.
    """

    @abstractmethod
    def notify_new_listing(
        self,
        target: Target,
        listing: Listing,
        screenshot: bytes | None = None,
    ) -> bool:
        """
        Announce one new listing on the target's channel.
        """

    @abstractmethod
    def notify_error(self, message: str) -> bool:
        """
        Alert operators about a failure that needs attention.
        """

    @abstractmethod
    def notify_health(self, counters: RunCounters, session_state: SessionState) -> bool:
        """
        Periodic liveness report.
        """

    @abstractmethod
    def notify_startup(self, targets: Sequence[Target]) -> bool:
        """
        Announce the monitored target catalog once at startup.
        """
