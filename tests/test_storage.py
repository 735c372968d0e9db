"""
tests/test_storage.py

Pytest tests for the durable dedupe backends.

Coverage
--------
- JSON file backend: order, missing file, corrupt file, legacy object form
- JSON file backend: a crash during replace leaves previous state intact
- JSON file backend: store ids that sanitize alike keep separate files
- SQLAlchemy backend on SQLite: order, replace-on-save, store isolation
- Database URL normalization
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from listing_watch.scraping.dedupe import DeduplicationStore
from listing_watch.scraping.errors import DedupeStorageError
from listing_watch.scraping.storage import JSONFileDedupeStorage, SQLAlchemyDedupeStorage
from listing_watch.scraping.storage.sqlalchemy_storage import normalize_database_url


class TestJSONFileDedupeStorage:
    @pytest.fixture()
    def storage(self, tmp_path: Path) -> JSONFileDedupeStorage:
        return JSONFileDedupeStorage(state_dir=tmp_path / "seen")

    def test_missing_file_loads_empty(self, storage: JSONFileDedupeStorage) -> None:
        assert storage.load("mickey") == []

    def test_save_then_load_preserves_order(self, storage: JSONFileDedupeStorage) -> None:
        storage.save("mickey", ["3", "1", "2"])
        assert storage.load("mickey") == ["3", "1", "2"]

    def test_unsafe_store_id_is_sanitized(self, storage: JSONFileDedupeStorage, tmp_path: Path) -> None:
        path = storage.path_for("../etc/passwd")
        assert path.parent == tmp_path / "seen"
        assert "/" not in path.name

    @pytest.mark.parametrize(
        ("first", "second"),
        [("mickey iconic", "mickey/iconic"), ("...", "___"), ("Mickey", "mickey")],
    )
    def test_ids_with_same_sanitized_name_use_distinct_files(
        self, storage: JSONFileDedupeStorage, first: str, second: str
    ) -> None:
        assert storage.path_for(first) != storage.path_for(second)
        assert storage.path_for(first).name.lower() != storage.path_for(second).name.lower()

        storage.save(first, ["A1"])
        storage.save(second, ["B1"])

        assert storage.load(first) == ["A1"]
        assert storage.load(second) == ["B1"]

    def test_colliding_names_do_not_renotify_after_restart(self, tmp_path: Path) -> None:
        storage = JSONFileDedupeStorage(state_dir=tmp_path / "seen")
        before = DeduplicationStore(storage=storage)
        before.load("mickey iconic")
        before.load("mickey/iconic")
        before.record("mickey iconic", "A1")
        before.flush("mickey iconic")
        before.record("mickey/iconic", "B1")
        before.flush("mickey/iconic")

        after = DeduplicationStore(storage=JSONFileDedupeStorage(state_dir=tmp_path / "seen"))
        after.load("mickey iconic")

        assert after.has("mickey iconic", "A1")
        assert not after.has("mickey iconic", "B1")

    def test_corrupt_file_raises_storage_error(self, storage: JSONFileDedupeStorage) -> None:
        path = storage.path_for("mickey")
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2,", encoding="utf-8")

        with pytest.raises(DedupeStorageError):
            storage.load("mickey")

    def test_object_with_ids_is_accepted(self, storage: JSONFileDedupeStorage) -> None:
        path = storage.path_for("mickey")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"ids": ["9", "8"]}), encoding="utf-8")

        assert storage.load("mickey") == ["9", "8"]

    def test_crash_during_replace_keeps_previous_state(
        self,
        storage: JSONFileDedupeStorage,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        storage.save("mickey", ["1", "2"])

        def _crash(*_args, **_kwargs) -> None:
            raise OSError("killed mid-write")

        monkeypatch.setattr(os, "replace", _crash)
        with pytest.raises(DedupeStorageError):
            storage.save("mickey", ["1", "2", "3"])
        monkeypatch.undo()

        assert storage.load("mickey") == ["1", "2"]
        leftovers = [path.name for path in storage.path_for("mickey").parent.iterdir()]
        assert leftovers == [storage.path_for("mickey").name]

    def test_id_recorded_but_not_flushed_is_absent_after_restart(
        self,
        storage: JSONFileDedupeStorage,
        tmp_path: Path,
    ) -> None:
        first_process = DeduplicationStore(storage=storage)
        first_process.load("mickey")
        first_process.record("mickey", "1")
        first_process.flush("mickey")
        first_process.record("mickey", "2")

        restarted = DeduplicationStore(storage=JSONFileDedupeStorage(state_dir=tmp_path / "seen"))
        restarted.load("mickey")

        assert restarted.has("mickey", "1")
        assert not restarted.has("mickey", "2")


class TestSQLAlchemyDedupeStorage:
    @pytest.fixture()
    def storage(self, tmp_path: Path):
        backend = SQLAlchemyDedupeStorage.from_url(f"sqlite:///{tmp_path / 'dedupe.db'}")
        yield backend
        backend.close()

    def test_unknown_store_loads_empty(self, storage: SQLAlchemyDedupeStorage) -> None:
        assert storage.load("mickey") == []

    def test_save_preserves_order(self, storage: SQLAlchemyDedupeStorage) -> None:
        storage.save("mickey", ["30", "10", "20"])
        assert storage.load("mickey") == ["30", "10", "20"]

    def test_save_replaces_previous_rows(self, storage: SQLAlchemyDedupeStorage) -> None:
        storage.save("mickey", ["1", "2", "3"])
        storage.save("mickey", ["2", "3", "4"])
        assert storage.load("mickey") == ["2", "3", "4"]

    def test_stores_are_isolated(self, storage: SQLAlchemyDedupeStorage) -> None:
        storage.save("a", ["1"])
        storage.save("b", ["1", "2"])
        assert storage.load("a") == ["1"]
        assert storage.load("b") == ["1", "2"]

    def test_large_save_is_batched(self, tmp_path: Path) -> None:
        from sqlalchemy import create_engine

        engine = create_engine(f"sqlite:///{tmp_path / 'batched.db'}")
        storage = SQLAlchemyDedupeStorage(engine=engine, batch_size=7)
        ids = [str(index) for index in range(50)]
        storage.save("mickey", ids)
        assert storage.load("mickey") == ids
        storage.close()

    def test_duplicate_ids_fail_without_losing_previous_state(
        self,
        storage: SQLAlchemyDedupeStorage,
    ) -> None:
        storage.save("mickey", ["1", "2"])
        with pytest.raises(DedupeStorageError):
            storage.save("mickey", ["3", "3"])
        assert storage.load("mickey") == ["1", "2"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgres://u:p@db/watch", "postgresql+psycopg://u:p@db/watch"),
        ("postgresql://u:p@db/watch", "postgresql+psycopg://u:p@db/watch"),
        ("sqlite:///data/dedupe.db", "sqlite:///data/dedupe.db"),
    ],
)
def test_normalize_database_url(raw: str, expected: str) -> None:
    assert normalize_database_url(raw) == expected
