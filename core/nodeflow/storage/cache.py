"""In-memory LRU cache bounded by a byte budget."""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    size: int


class MemoryCache:
    """
    Byte-budgeted LRU cache of materialized variable values.

    Access order lives in an OrderedDict: the first entry is the least
    recently touched. ``put`` evicts from the front until the new entry fits.
    """

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._used = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def used_bytes(self) -> int:
        return self._used

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._entries)

    def get(self, key: str) -> tuple[bool, Any]:
        """Return (hit, value) and mark the key most recently used."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return False, None
        self._entries.move_to_end(key)
        self.hits += 1
        return True, entry.value

    def touch(self, key: str) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)

    def put(self, key: str, value: Any, size: int) -> bool:
        """
        Insert or replace an entry, evicting LRU entries to make room.

        Returns False (and caches nothing) when the entry alone exceeds the budget.
        """
        self.discard(key)
        if size > self.max_bytes:
            return False

        while self._entries and self._used + size > self.max_bytes:
            evicted_key, evicted = self._entries.popitem(last=False)
            self._used -= evicted.size
            self.evictions += 1
            logger.debug(f"Evicted '{evicted_key}' ({evicted.size} bytes) from memory cache")

        self._entries[key] = CacheEntry(value=value, size=size)
        self._used += size
        return True

    def discard(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._used -= entry.size

    def clear(self) -> None:
        self._entries.clear()
        self._used = 0

    def get_stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "used_bytes": self._used,
            "max_bytes": self.max_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }
