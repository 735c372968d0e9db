"""
listing_watch/domain/listings.py

Domain models for watched search targets and the listings they return.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlsplit, urlunsplit

MAX_TITLE_LENGTH = 256
MISSING_PRICE = "N/A"


@dataclass(frozen=True)
class Target:
    """
    One independently configured marketplace search.
    """

    name: str
    query: str
    store_id: str
    category_id: str | None = None
    required_keywords: tuple[str, ...] = field(default_factory=tuple)
    channel: str | None = None


@dataclass(frozen=True)
class Listing:
    """
    A single item returned by one poll of one target.
    """

    id: str
    title: str
    url: str
    price: str = MISSING_PRICE
    image: str | None = None

    @classmethod
    def from_raw(cls, raw: dict[str, Any], *, base_url: str = "") -> "Listing":
        """
        Build a normalized listing from an extractor row.

        Raises ValueError when the row has no usable id.
        """

        listing_id = str(raw.get("id") or "").strip()
        if not listing_id:
            raise ValueError("Listing row is missing an id.")

        title = " ".join(str(raw.get("title") or "").split())
        price = " ".join(str(raw.get("price") or "").split())
        image = str(raw.get("image") or "").strip()
        return cls(
            id=listing_id,
            title=truncate_title(title),
            url=canonicalize_url(str(raw.get("url") or ""), base_url=base_url),
            price=price or MISSING_PRICE,
            image=urljoin(base_url, image) if image else None,
        )


def canonicalize_url(url: str, *, base_url: str = "") -> str:
    """
    Resolve relative links and drop query string and fragment.
    """

    absolute = urljoin(base_url, url.strip()) if base_url else url.strip()
    parts = urlsplit(absolute)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def truncate_title(title: str, limit: int = MAX_TITLE_LENGTH) -> str:
    if len(title) <= limit:
        return title
    return title[: limit - 3].rstrip() + "..."
