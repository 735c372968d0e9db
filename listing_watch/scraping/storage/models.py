"""
listing_watch/scraping/storage/models.py

Declarative base and the seen-listing table for database-backed dedupe state.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for listing watch tables.
    """


class SeenListing(Base):
    __tablename__ = "seen_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(128), nullable=False)
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Insertion order within the store; lowest is oldest",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("store_id", "listing_id", name="uq_seen_listings_store_listing"),
        Index("ix_seen_listings_store_id_position", "store_id", "position"),
    )
