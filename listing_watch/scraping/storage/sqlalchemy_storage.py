"""
SQLAlchemy-backed storage implementation for dedupe state.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import create_engine, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from listing_watch.scraping.errors import DedupeStorageError
from listing_watch.scraping.storage.base import DedupeStorage
from listing_watch.scraping.storage.models import Base, SeenListing


def normalize_database_url(url: str) -> str:
    """
    Normalize postgres URLs to SQLAlchemy's recommended psycopg driver form.
    """

    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


class SQLAlchemyDedupeStorage(DedupeStorage):
    """
    Persist seen ids as ordered rows; a save replaces a store's rows in one
    transaction.
    """

    def __init__(self, *, engine: Engine, batch_size: int = 500) -> None:
        self._engine = engine
        self._batch_size = max(1, batch_size)
        self._session_factory = sessionmaker(
            bind=engine,
            class_=Session,
            autoflush=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str) -> "SQLAlchemyDedupeStorage":
        engine = create_engine(normalize_database_url(url), pool_pre_ping=True)
        return cls(engine=engine)

    def load(self, store_id: str) -> list[str]:
        statement = (
            select(SeenListing.listing_id)
            .where(SeenListing.store_id == store_id)
            .order_by(SeenListing.position)
        )
        try:
            with self._session_factory() as session:
                return list(session.scalars(statement))
        except SQLAlchemyError as exc:
            raise DedupeStorageError(f"Unable to load dedupe state for {store_id}: {exc}") from exc

    def save(self, store_id: str, listing_ids: Sequence[str]) -> None:
        rows = [
            {"store_id": store_id, "listing_id": listing_id, "position": position}
            for position, listing_id in enumerate(listing_ids)
        ]
        session = self._session_factory()
        try:
            session.execute(delete(SeenListing).where(SeenListing.store_id == store_id))
            for start in range(0, len(rows), self._batch_size):
                session.execute(insert(SeenListing), rows[start : start + self._batch_size])
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise DedupeStorageError(f"Unable to save dedupe state for {store_id}: {exc}") from exc
        finally:
            session.close()

    def close(self) -> None:
        self._engine.dispose()
