"""
JSON file storage for dedupe state, one file per target.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from collections.abc import Sequence
from pathlib import Path

from listing_watch.scraping.errors import DedupeStorageError
from listing_watch.scraping.storage.base import DedupeStorage

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


class JSONFileDedupeStorage(DedupeStorage):
    """
    Stores each target's ids as a JSON array in
    `<state_dir>/<sanitized store_id>-<digest>.json`. The digest is taken over
    the raw store id, so ids that sanitize to the same name never share a file.

    Saves write a temp file in the same directory and `os.replace` it over the
    old one, so readers only ever see a complete previous or new file.
    """

    def __init__(self, *, state_dir: str | Path) -> None:
        self._state_dir = Path(state_dir)

    def path_for(self, store_id: str) -> Path:
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", store_id).strip("._") or "default"
        digest = hashlib.sha1(store_id.encode("utf-8")).hexdigest()[:12]
        return self._state_dir / f"{safe_name}-{digest}.json"

    def load(self, store_id: str) -> list[str]:
        path = self.path_for(store_id)
        if not path.exists():
            return []

        try:
            raw_data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise DedupeStorageError(f"Unable to read dedupe state {path}: {exc}") from exc

        if isinstance(raw_data, dict):
            raw_data = raw_data.get("ids", [])
        if not isinstance(raw_data, list):
            raise DedupeStorageError(f"Dedupe state {path} must be a JSON array.")
        return [str(item) for item in raw_data if str(item).strip()]

    def save(self, store_id: str, listing_ids: Sequence[str]) -> None:
        path = self.path_for(store_id)
        try:
            atomic_write_json(path, list(listing_ids))
        except OSError as exc:
            raise DedupeStorageError(f"Unable to write dedupe state {path}: {exc}") from exc


def atomic_write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
