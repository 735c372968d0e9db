"""
eBay search results source rendered through a Playwright session.
"""

from __future__ import annotations

import logging
import random
from typing import Any
from urllib.parse import urlencode

from playwright.sync_api import Error as PlaywrightError

from listing_watch.domain.listings import Target
from listing_watch.scraping.base import ListingSource
from listing_watch.scraping.browser import PlaywrightRenderSession
from listing_watch.scraping.logging_utils import log_event
from listing_watch.scraping.parsing import RESULTS_CONTAINER_SELECTORS, EbayResultsParser

logger = logging.getLogger(__name__)

SEARCH_PATH = "/sch/i.html"
SORT_NEWLY_LISTED = "10"
SCREENSHOT_VIEWPORT = {"width": 1280, "height": 800}


class EbayListingSource(ListingSource):
    base_url = "https://www.ebay.com"

    def __init__(
        self,
        *,
        results_wait_seconds: float = 15.0,
        settle_delay_range: tuple[float, float] = (0.8, 2.2),
        rng: random.Random | None = None,
    ) -> None:
        self._results_wait_ms = results_wait_seconds * 1000
        self._settle_delay_range = settle_delay_range
        self._rng = rng or random.Random()

    def build_search_url(self, target: Target) -> str:
        params = {"_nkw": target.query, "_sop": SORT_NEWLY_LISTED}
        if target.category_id:
            params["_sacat"] = target.category_id
        return f"{self.base_url}{SEARCH_PATH}?{urlencode(params)}"

    def render(self, session: PlaywrightRenderSession, url: str) -> str:
        page = session.page
        page.goto(url, wait_until="domcontentloaded")
        try:
            page.wait_for_selector(
                ", ".join(RESULTS_CONTAINER_SELECTORS),
                timeout=self._results_wait_ms,
            )
        except PlaywrightError:
            # The parser reports a missing container; the HTML is still useful.
            log_event(logger, logging.WARNING, "results_container_wait_timeout", url=url)

        settle_ms = self._rng.uniform(*self._settle_delay_range) * 1000
        page.wait_for_timeout(settle_ms)
        return page.content()

    def extract_listings(self, page: Any) -> list[dict[str, Any]]:
        return EbayResultsParser.parse(page)

    def capture_screenshot(self, session: PlaywrightRenderSession, url: str) -> bytes | None:
        """
        Open the listing page in a throwaway tab and return a PNG.
        """

        page = session.context.new_page()
        try:
            page.set_viewport_size(SCREENSHOT_VIEWPORT)
            page.goto(url, wait_until="domcontentloaded")
            try:
                page.wait_for_selector(".x-item-title", timeout=5000)
            except PlaywrightError:
                logger.debug("Listing title not rendered before screenshot: %s", url)
            return page.screenshot(type="png", full_page=False)
        finally:
            page.close()
