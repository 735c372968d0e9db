"""
listing_watch/scraping package marker.
"""
