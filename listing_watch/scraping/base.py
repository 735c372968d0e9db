"""
Extraction contract between the polling core and the rendering collaborator.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from listing_watch.domain.listings import Listing, Target
from listing_watch.scraping.logging_utils import log_event

logger = logging.getLogger(__name__)


class RenderSession(ABC):
    """
    Handle on one live rendering engine (browser plus its OS processes).
    """

    @abstractmethod
    def close(self) -> None:
        """
        Release the session in an orderly way. May block.
        """

    @abstractmethod
    def process_ids(self) -> set[int]:
        """
        OS process ids belonging to this session, for forced reclamation.
        Must be safe to call from any thread.
        """


SessionFactory = Callable[[], RenderSession]


class ListingSource(ABC):
    """
    Site-specific rendering and extraction of search results.

    Subclasses implement page loading and markup parsing; this class
    normalizes extracted rows into `Listing` objects.
    """

    base_url: str = ""

    @abstractmethod
    def build_search_url(self, target: Target) -> str:
        """
        Search URL for one target.
        """

    @abstractmethod
    def render(self, session: RenderSession, url: str) -> Any:
        """
        Load `url` in the session and return an opaque page handle.
        """

    @abstractmethod
    def extract_listings(self, page: Any) -> list[dict[str, Any]]:
        """
        Extract raw `{id, title, url, price, image}` rows from a page handle.
        """

    def capture_screenshot(self, session: RenderSession, url: str) -> bytes | None:
        return None

    def fetch_listings(self, session: RenderSession, target: Target) -> list[Listing]:
        """
        Render the target's search page and return normalized listings.
        """

        url = self.build_search_url(target)
        page = self.render(session, url)
        rows = self.extract_listings(page)

        listings: list[Listing] = []
        skipped = 0
        for row in rows:
            try:
                listings.append(Listing.from_raw(row, base_url=self.base_url))
            except ValueError:
                skipped += 1

        log_event(
            logger,
            logging.INFO,
            "listings_extracted",
            target=target.name,
            url=url,
            listings=len(listings),
            skipped_rows=skipped,
        )
        return listings
