"""
Config helpers for the polling engine.
"""

from listing_watch.scraping.config.loader import get_watch_settings, load_targets, select_targets
from listing_watch.scraping.config.models import WatchSettings

__all__ = [
    "WatchSettings",
    "get_watch_settings",
    "load_targets",
    "select_targets",
]
