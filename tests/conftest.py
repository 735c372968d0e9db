from __future__ import annotations

import pytest

from fakes import MemoryDedupeStorage, RecordingNotifier, RecordingStopToken
from listing_watch.scraping.config import get_watch_settings


@pytest.fixture()
def stop_token() -> RecordingStopToken:
    return RecordingStopToken()


@pytest.fixture()
def memory_storage() -> MemoryDedupeStorage:
    return MemoryDedupeStorage()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_watch_settings.cache_clear()
    yield
    get_watch_settings.cache_clear()
