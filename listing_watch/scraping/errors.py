"""
Exceptions raised by the polling and deduplication engine.
"""

from __future__ import annotations


class ListingWatchError(Exception):
    """Base exception for listing watch failures."""


class ListingExtractionError(ListingWatchError):
    """Raised when a rendered page does not contain a results container."""


class SessionStartError(ListingWatchError):
    """Raised when a rendering session cannot be created."""


class SessionTimeoutError(ListingWatchError):
    """Raised when a session operation exceeds its deadline."""


class DedupeStorageError(ListingWatchError):
    """Raised when a dedupe storage backend fails to load or save."""


class TargetConfigError(ListingWatchError, ValueError):
    """Raised when the target catalog is invalid."""


class HardFaultError(ListingWatchError):
    """
    Raised after forced cleanup once sustained failures cross the
    hard-restart threshold. The process must exit with status 1.
    """


class ShutdownRequested(ListingWatchError):
    """Raised out of an interruptible wait once a stop signal arrives."""
