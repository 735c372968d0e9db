"""
Storage layer exports.
"""

from listing_watch.scraping.storage.base import DedupeStorage
from listing_watch.scraping.storage.json_storage import JSONFileDedupeStorage
from listing_watch.scraping.storage.sqlalchemy_storage import SQLAlchemyDedupeStorage

__all__ = ["DedupeStorage", "JSONFileDedupeStorage", "SQLAlchemyDedupeStorage"]
