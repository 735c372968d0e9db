"""
listing_watch/domain package marker.
"""

from listing_watch.domain.listings import Listing, Target
from listing_watch.domain.monitoring import RunCounters, SessionPhase, SessionState

__all__ = [
    "Listing",
    "RunCounters",
    "SessionPhase",
    "SessionState",
    "Target",
]
