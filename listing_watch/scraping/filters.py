"""
Keyword post-filter applied to new listings before notification.
"""

from __future__ import annotations

from collections.abc import Iterable


def matches_keywords(title: str, required_keywords: Iterable[str]) -> bool:
    """
    True when every required keyword occurs in `title`, ignoring case.

    An empty keyword list matches everything.
    """

    haystack = title.casefold()
    for keyword in required_keywords:
        needle = keyword.strip().casefold()
        if needle and needle not in haystack:
            return False
    return True
