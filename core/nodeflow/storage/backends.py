"""
Storage Backend Adapters - the three independent stores behind the manager.

- EphemeralStore: process memory, key → JSON (session-scoped records)
- PersistentStore: key → JSON files (persistent records)
- EphemeralStore and PersistentStore back the durable-small tier's session
  and persistent variants respectively
- BlobStore: sqlite ``items`` and ``media`` tables (the durable-large tier)

Durable backends do their blocking work in ``asyncio.to_thread`` so a slow
disk never stalls the event loop.
"""

import asyncio
import json
import logging
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from nodeflow.errors import StorageBackendError
from nodeflow.utils.io import atomic_write

# one path component, not hidden, no traversal
_SAFE_KEY = re.compile(r'(?!\.)(?!\s*$)(?!.*\.\.)[^\\/<>:"|?*\x00]+')

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async key → value store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a value under key."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with prefix."""


class EphemeralStore(KeyValueStore):
    """
    Process-memory key → JSON store.

    Backs session-scoped records: it lives as long as the process, but values
    round-trip through JSON text exactly like the persistent variant, so
    callers never share mutable objects with the store.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


class PersistentStore(KeyValueStore):
    """
    File-backed key → JSON store, one file per key.

    Structure:
        {base_path}/
          ├── item_greeting.json
          └── binding_node_1.json
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.fullmatch(key):
            raise ValueError(f"unsafe storage key: {key!r}")
        return self.base_path / f"{key}.json"

    async def get(self, key: str) -> Any | None:
        path = self._path_for(key)

        def _read():
            if not path.exists():
                return None
            with open(path, encoding="utf-8") as f:
                return json.load(f)

        try:
            return await asyncio.to_thread(_read)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageBackendError(f"Failed to read '{key}': {e}") from e

    async def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)

        def _write():
            with atomic_write(path) as f:
                json.dump(value, f, ensure_ascii=False, indent=2, default=str)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageBackendError(f"Failed to write '{key}': {e}") from e

    async def delete(self, key: str) -> bool:
        path = self._path_for(key)

        def _delete():
            if path.exists():
                path.unlink()
                return True
            return False

        return await asyncio.to_thread(_delete)

    async def keys(self, prefix: str = "") -> list[str]:
        def _list():
            return sorted(p.stem for p in self.base_path.glob("*.json") if p.stem.startswith(prefix))

        return await asyncio.to_thread(_list)


@dataclass
class BlobRow:
    """A row of the ``items`` table."""

    name: str
    payload: bytes
    encoding: str = "text"
    compressed: bool = False


@dataclass
class MediaRecord:
    """A row of the ``media`` table."""

    media_id: str
    item_name: str
    type: str
    data: bytes
    mime_type: str = "application/octet-stream"
    original_size: int = 0
    stored_size: int = 0
    stored: datetime = field(default_factory=datetime.now)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    name TEXT PRIMARY KEY,
    payload BLOB NOT NULL,
    encoding TEXT NOT NULL,
    compressed INTEGER NOT NULL DEFAULT 0,
    stored TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS media (
    media_id TEXT PRIMARY KEY,
    item_name TEXT NOT NULL,
    type TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    original_size INTEGER NOT NULL,
    stored_size INTEGER NOT NULL,
    data BLOB NOT NULL,
    stored TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_media_item ON media(item_name);
"""


class BlobStore:
    """
    Large-object tier on sqlite.

    ``items`` holds out-of-line text/JSON payloads by variable name; ``media``
    holds binary payloads by media id. Pass ``":memory:"`` for a throwaway
    database.
    """

    def __init__(self, path: Path | str):
        self.path = str(path)
        self._lock = threading.Lock()
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StorageBackendError(f"Large-object store unavailable at {self.path}: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                rows = cursor.fetchall()
                self._conn.commit()
                return rows
            except sqlite3.Error as e:
                raise StorageBackendError(f"Large-object store error: {e}") from e

    async def _run(self, sql: str, params: tuple = ()) -> list[tuple]:
        return await asyncio.to_thread(self._execute, sql, params)

    # === ITEMS ===

    async def put_item(self, row: BlobRow) -> None:
        await self._run(
            "INSERT OR REPLACE INTO items (name, payload, encoding, compressed, stored) "
            "VALUES (?, ?, ?, ?, ?)",
            (row.name, row.payload, row.encoding, int(row.compressed), datetime.now().isoformat()),
        )

    async def get_item(self, name: str) -> BlobRow | None:
        rows = await self._run(
            "SELECT name, payload, encoding, compressed FROM items WHERE name = ?", (name,)
        )
        if not rows:
            return None
        row_name, payload, encoding, compressed = rows[0]
        return BlobRow(name=row_name, payload=payload, encoding=encoding, compressed=bool(compressed))

    async def delete_item(self, name: str) -> None:
        await self._run("DELETE FROM items WHERE name = ?", (name,))

    # === MEDIA ===

    async def put_media(self, record: MediaRecord) -> None:
        await self._run(
            "INSERT OR REPLACE INTO media "
            "(media_id, item_name, type, mime_type, original_size, stored_size, data, stored) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.media_id,
                record.item_name,
                record.type,
                record.mime_type,
                record.original_size,
                record.stored_size,
                record.data,
                record.stored.isoformat(),
            ),
        )

    async def get_media(self, media_id: str) -> MediaRecord | None:
        rows = await self._run(
            "SELECT media_id, item_name, type, mime_type, original_size, stored_size, data, stored "
            "FROM media WHERE media_id = ?",
            (media_id,),
        )
        if not rows:
            return None
        mid, item_name, type_, mime, original, stored_size, data, stored = rows[0]
        return MediaRecord(
            media_id=mid,
            item_name=item_name,
            type=type_,
            data=data,
            mime_type=mime,
            original_size=original,
            stored_size=stored_size,
            stored=datetime.fromisoformat(stored),
        )

    async def delete_media(self, media_id: str) -> None:
        await self._run("DELETE FROM media WHERE media_id = ?", (media_id,))

    async def delete_media_for_item(self, item_name: str) -> None:
        await self._run("DELETE FROM media WHERE item_name = ?", (item_name,))

    async def stats(self) -> dict[str, int]:
        item_rows = await self._run("SELECT COUNT(*), COALESCE(SUM(LENGTH(payload)), 0) FROM items")
        media_rows = await self._run("SELECT COUNT(*), COALESCE(SUM(stored_size), 0) FROM media")
        return {
            "items": item_rows[0][0],
            "item_bytes": item_rows[0][1],
            "media": media_rows[0][0],
            "media_bytes": media_rows[0][1],
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()
