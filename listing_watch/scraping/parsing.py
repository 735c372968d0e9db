"""
BeautifulSoup-based parsing of marketplace search result pages.
"""

from __future__ import annotations

import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from listing_watch.domain.listings import MISSING_PRICE
from listing_watch.scraping.errors import ListingExtractionError

ITEM_ID_REGEX = re.compile(r"/itm/(?:[^/?#]+/)?(\d+)")
PLACEHOLDER_TITLES = ("shop on ebay",)
TITLE_PREFIXES = ("new listing",)
TITLE_SUFFIXES = ("opens in a new window or tab",)

RESULTS_CONTAINER_SELECTORS = [
    "ul.srp-results",
    ".srp-results",
    "#srp-river-results",
]
CARD_SELECTORS = [
    "li.s-item",
    "li.s-card",
]
TITLE_SELECTORS = [".s-item__title", ".s-card__title"]
LINK_SELECTORS = ["a.s-item__link", "a.su-link", "a[href*='/itm/']"]
PRICE_SELECTORS = [".s-item__price", ".s-card__price"]
IMAGE_SELECTORS = [".s-item__image-img", "img.s-card__image", "img"]


class EbayResultsParser:
    """
    Deterministic extraction of listing rows from eBay search HTML.
    """

    @classmethod
    def parse(cls, html: str) -> list[dict[str, Any]]:
        """
        Return raw listing rows in page order.

        Raises ListingExtractionError when the page has no results container,
        which is how a block page or a redesign shows up.
        """

        soup = BeautifulSoup(html, "html.parser")
        container = cls._first(soup, RESULTS_CONTAINER_SELECTORS)
        if container is None:
            raise ListingExtractionError("Search results container not found.")

        rows: list[dict[str, Any]] = []
        for card in cls._select_cards(container):
            row = cls.parse_card(card)
            if row is not None:
                rows.append(row)
        return rows

    @classmethod
    def parse_card(cls, card: Tag) -> dict[str, Any] | None:
        title_node = cls._first(card, TITLE_SELECTORS)
        title = cls._clean_title(title_node.get_text(" ", strip=True) if title_node else "")
        if not title or title.lower().startswith(PLACEHOLDER_TITLES):
            return None

        link_node = cls._first(card, LINK_SELECTORS)
        href = str(link_node.get("href") or "") if link_node else ""
        listing_id = cls._extract_id(card=card, href=href)
        if not href or not listing_id:
            return None

        price_node = cls._first(card, PRICE_SELECTORS)
        price = cls._clean_text(price_node.get_text(" ", strip=True)) if price_node else ""

        return {
            "id": listing_id,
            "title": title,
            "url": href,
            "price": price or MISSING_PRICE,
            "image": cls._extract_image(card),
        }

    @staticmethod
    def _select_cards(container: Tag) -> list[Tag]:
        # One combined selector keeps document order across card layouts.
        return list(container.select(", ".join(CARD_SELECTORS)))

    @staticmethod
    def _extract_id(*, card: Tag, href: str) -> str | None:
        match = ITEM_ID_REGEX.search(href)
        if match:
            return match.group(1)
        listing_attr = card.get("data-listingid") or card.get("data-viewport")
        if isinstance(listing_attr, str) and listing_attr.isdigit():
            return listing_attr
        return None

    @staticmethod
    def _extract_image(card: Tag) -> str | None:
        for selector in IMAGE_SELECTORS:
            node = card.select_one(selector)
            if node is None:
                continue
            for attribute in ("src", "data-src", "data-defer-load"):
                value = node.get(attribute)
                if isinstance(value, str) and value.strip() and not value.startswith("data:"):
                    return value.strip()
        return None

    @classmethod
    def _clean_title(cls, value: str) -> str:
        title = cls._clean_text(value)
        lowered = title.lower()
        for prefix in TITLE_PREFIXES:
            if lowered.startswith(prefix):
                title = title[len(prefix):].strip()
                lowered = title.lower()
        for suffix in TITLE_SUFFIXES:
            if lowered.endswith(suffix):
                title = title[: -len(suffix)].strip()
                lowered = title.lower()
        return title

    @staticmethod
    def _clean_text(value: str) -> str:
        return " ".join(value.split())

    @staticmethod
    def _first(node: Tag, selectors: list[str]) -> Tag | None:
        for selector in selectors:
            found = node.select_one(selector)
            if found is not None:
                return found
        return None
