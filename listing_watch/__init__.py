"""
listing_watch package marker.
"""

__version__ = "1.0.0"
