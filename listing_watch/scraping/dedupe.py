"""
Per-target store of previously observed listing ids.

Ids are kept in insertion order (a dict used as an ordered set), so pruning
drops exactly the oldest-inserted entries. The in-memory set is
authoritative for the process lifetime; `flush` copies it to the durable
backend and a failed flush is logged rather than raised.

A store whose durable state could not be read is never flushed: the backend
may still hold ids this process has not seen. `recover` retries the read and
merges the persisted ids in ahead of anything recorded since.
"""

from __future__ import annotations

import logging

from listing_watch.scraping.errors import DedupeStorageError
from listing_watch.scraping.logging_utils import describe_error, log_event
from listing_watch.scraping.storage.base import DedupeStorage

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 2000


class DeduplicationStore:
    def __init__(self, *, storage: DedupeStorage) -> None:
        self._storage = storage
        self._seen: dict[str, dict[str, None]] = {}
        self._unreadable: set[str] = set()

    def load(self, store_id: str) -> bool:
        """
        Load durable state for `store_id` into memory.

        Returns True when prior ids existed. An unreadable backend is logged
        and treated as empty until `recover` succeeds.
        """

        stored_ids = self._read(store_id)
        self._seen[store_id] = dict.fromkeys(stored_ids or [])
        log_event(
            logger,
            logging.INFO,
            "dedupe_loaded",
            store_id=store_id,
            entries=len(self._seen[store_id]),
        )
        return bool(self._seen[store_id])

    def needs_recovery(self, store_id: str) -> bool:
        return store_id in self._unreadable

    def recover(self, store_id: str) -> bool:
        """
        Retry reading durable state after a failed load.

        Persisted ids are placed before ids recorded in memory since, so they
        count as older when pruning. Returns True when persisted ids existed.
        """

        stored_ids = self._read(store_id)
        if stored_ids is None:
            return False

        merged = dict.fromkeys(stored_ids)
        merged.update(self._ids(store_id))
        self._seen[store_id] = merged
        log_event(
            logger,
            logging.INFO,
            "dedupe_recovered",
            store_id=store_id,
            persisted=len(stored_ids),
            entries=len(merged),
        )
        return bool(stored_ids)

    def has(self, store_id: str, listing_id: str) -> bool:
        return listing_id in self._ids(store_id)

    def record(self, store_id: str, listing_id: str) -> bool:
        """
        Mark `listing_id` as seen. Returns False if it was already present.
        """

        ids = self._ids(store_id)
        if listing_id in ids:
            return False
        ids[listing_id] = None
        return True

    def prune(self, store_id: str, max_size: int = DEFAULT_MAX_ENTRIES) -> int:
        """
        Drop oldest-inserted ids until at most `max_size` remain.

        Returns the number of ids removed.
        """

        ids = self._ids(store_id)
        excess = len(ids) - max(0, max_size)
        if excess <= 0:
            return 0

        for listing_id in list(ids)[:excess]:
            del ids[listing_id]
        log_event(
            logger,
            logging.INFO,
            "dedupe_pruned",
            store_id=store_id,
            removed=excess,
            remaining=len(ids),
        )
        return excess

    def flush(self, store_id: str) -> bool:
        """
        Persist current ids for `store_id`. Returns False on failure, or when
        the store's durable state has not been read yet.
        """

        ids = self._ids(store_id)
        if store_id in self._unreadable:
            log_event(
                logger,
                logging.WARNING,
                "dedupe_flush_deferred",
                store_id=store_id,
                entries=len(ids),
            )
            return False
        try:
            self._storage.save(store_id, list(ids))
        except DedupeStorageError as exc:
            log_event(
                logger,
                logging.ERROR,
                "dedupe_flush_failed",
                store_id=store_id,
                entries=len(ids),
                error=describe_error(exc),
            )
            return False
        return True

    def size(self, store_id: str) -> int:
        return len(self._ids(store_id))

    def ids(self, store_id: str) -> list[str]:
        return list(self._ids(store_id))

    def _ids(self, store_id: str) -> dict[str, None]:
        return self._seen.setdefault(store_id, {})

    def _read(self, store_id: str) -> list[str] | None:
        try:
            stored_ids = self._storage.load(store_id)
        except DedupeStorageError as exc:
            self._unreadable.add(store_id)
            log_event(
                logger,
                logging.ERROR,
                "dedupe_load_failed",
                store_id=store_id,
                error=describe_error(exc),
            )
            return None
        self._unreadable.discard(store_id)
        return stored_ids
