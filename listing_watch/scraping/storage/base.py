"""
Storage layer interfaces for per-target dedupe state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence


class DedupeStorage(ABC):
    """
    Durable record of previously seen listing ids, keyed by store id.

    Implementations must replace a store's contents atomically on save so a
    crash mid-write leaves the previous durable state intact.
    """

    @abstractmethod
    def load(self, store_id: str) -> list[str]:
        """
        Return stored ids in insertion order, or an empty list if none exist.
        """

    @abstractmethod
    def save(self, store_id: str, listing_ids: Sequence[str]) -> None:
        """
        Replace the stored ids for `store_id`.
        """

    def close(self) -> None:
        """
        Release backend resources.
        """
