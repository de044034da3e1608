"""Pydantic schemas for runs and stored variables."""

from nodeflow.schemas.run import ExecutionRun, NodeRunResult, RunError, RunStatus
from nodeflow.schemas.storage_item import (
    HistoryEntry,
    MediaRefValue,
    MediaReference,
    PopupConfig,
    ScalarValue,
    StorageItem,
    StorageTier,
    StoredValue,
    StructuredValue,
    TextBlobValue,
    TierVariant,
    VariableBinding,
)

__all__ = [
    "ExecutionRun",
    "NodeRunResult",
    "RunError",
    "RunStatus",
    "HistoryEntry",
    "MediaRefValue",
    "MediaReference",
    "PopupConfig",
    "ScalarValue",
    "StorageItem",
    "StorageTier",
    "StoredValue",
    "StructuredValue",
    "TextBlobValue",
    "TierVariant",
    "VariableBinding",
]
