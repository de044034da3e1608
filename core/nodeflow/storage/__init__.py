"""Tiered variable storage."""

from nodeflow.storage.backends import BlobStore, EphemeralStore, KeyValueStore, PersistentStore
from nodeflow.storage.cache import MemoryCache
from nodeflow.storage.manager import StorageManager, VariableAction, compute_size, select_tier
from nodeflow.storage.media import MediaLoader
from nodeflow.storage.snapshot import SnapshotWriter, load_snapshot, write_snapshot
from nodeflow.storage.types import StorageAffinity, TypeRegistry, VariableType

__all__ = [
    "BlobStore",
    "EphemeralStore",
    "KeyValueStore",
    "PersistentStore",
    "MemoryCache",
    "StorageManager",
    "VariableAction",
    "compute_size",
    "select_tier",
    "MediaLoader",
    "SnapshotWriter",
    "load_snapshot",
    "write_snapshot",
    "StorageAffinity",
    "TypeRegistry",
    "VariableType",
]
