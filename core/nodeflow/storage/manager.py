"""
Storage Manager - one named-variable namespace over three storage tiers.

Writes pick a tier from (type affinity, byte size):

    large-object affinity      → durable-large
    size > 1 MiB               → durable-large
    size > 1 KiB               → durable-small / session
    otherwise                  → durable-small / persistent

Durable-small tiers keep the value inline in the item record. The
durable-large tier keeps a pointer in the record and the payload in the
blob store: text and JSON go to ``items`` (gzip'd above the compression
threshold), binary payloads go to ``media`` behind a MediaReference.

Reads go through a byte-budgeted LRU cache for small items. Metadata for
every item is indexed in memory for O(1) lookup.

The namespace is shared: any caller may read or write any variable, and
updates of one variable are serialized (last writer wins).
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from nodeflow.config import MiB, StorageConfig
from nodeflow.errors import StorageBackendError, VariableError
from nodeflow.runtime.event_bus import EventBus
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
from nodeflow.storage.backends import (
    BlobRow,
    BlobStore,
    EphemeralStore,
    KeyValueStore,
    MediaRecord,
    PersistentStore,
)
from nodeflow.storage.cache import MemoryCache
from nodeflow.storage.compression import compress_text, decompress_text
from nodeflow.storage.media import downsize_image
from nodeflow.storage.types import TypeRegistry, ValueKind, VariableType
from nodeflow.storage.variables import (
    lookup_path,
    render_template,
    template_references,
    validate_variable_name,
)

logger = logging.getLogger(__name__)

ITEM_PREFIX = "item_"
BINDING_PREFIX = "binding_"
EXPORT_VERSION = "1.0.0"

LARGE_OBJECT_THRESHOLD = MiB
SESSION_THRESHOLD = 1024


class VariableAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


# callback(action, item, previous_value)
VariableCallback = Callable[[VariableAction, StorageItem, Any], None]

ALL_VARIABLES = "*"


def compute_size(value: Any) -> int:
    """Byte size used for tier selection and size limits."""
    if isinstance(value, bytes | bytearray | memoryview):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    if isinstance(value, MediaReference):
        return value.size
    return len(json.dumps(value, ensure_ascii=False, default=str).encode("utf-8"))


def select_tier(var_type: VariableType, size: int) -> tuple[StorageTier, TierVariant | None]:
    """Deterministic tier placement from type affinity and byte size."""
    if var_type.is_large_object or size > LARGE_OBJECT_THRESHOLD:
        return StorageTier.DURABLE_LARGE, None
    if size > SESSION_THRESHOLD:
        return StorageTier.DURABLE_SMALL, TierVariant.SESSION
    return StorageTier.DURABLE_SMALL, TierVariant.PERSISTENT


def _embedded_media_ids(value: Any) -> set[str]:
    """Media ids referenced by the elements of an array value."""
    if not isinstance(value, list):
        return set()
    return {
        element["media_id"]
        for element in value
        if isinstance(element, dict) and isinstance(element.get("media_id"), str)
    }


class StorageManager:
    """
    Facade over the type registry, the tier backends and the LRU cache.

    Example:
        storage = StorageManager.in_memory()
        await storage.create_item("greeting", "string", "hi")
        await storage.get_item_value("greeting")   # "hi"
    """

    def __init__(
        self,
        persistent: KeyValueStore,
        session: KeyValueStore | None = None,
        blob_store: BlobStore | None = None,
        types: TypeRegistry | None = None,
        config: StorageConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.config = config or StorageConfig()
        self.types = types or TypeRegistry()
        self.persistent = persistent
        self.session = session or EphemeralStore()
        self.blob_store = blob_store
        self.cache = MemoryCache(self.config.memory_budget)
        self._event_bus = event_bus

        self._items: dict[str, StorageItem] = {}
        self._bindings: dict[str, VariableBinding] = {}
        self._history: dict[str, deque[HistoryEntry]] = {}
        self._subscribers: dict[str, dict[int, VariableCallback]] = {}
        self._subscriber_counter = 0
        self._update_locks: dict[str, asyncio.Lock] = {}

    # === CONSTRUCTION ===

    @classmethod
    def open(
        cls,
        storage_dir: Path | str | None = None,
        config: StorageConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> StorageManager:
        """
        Build a manager over on-disk stores under ``storage_dir``.

        If the large-object database cannot be opened the manager still
        works; large values fall back to the persistent tier where possible.
        Call ``load()`` afterwards to restore existing variables.
        """
        config = config or StorageConfig()
        base = Path(storage_dir) if storage_dir else config.storage_dir

        blob_store: BlobStore | None
        try:
            blob_store = BlobStore(base / "large_objects.db")
        except StorageBackendError as e:
            logger.error(f"✗ {e}; large values will fall back to the persistent tier")
            blob_store = None

        return cls(
            persistent=PersistentStore(base / "records"),
            blob_store=blob_store,
            config=config,
            event_bus=event_bus,
        )

    @classmethod
    def in_memory(
        cls,
        config: StorageConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> StorageManager:
        """A manager whose every tier lives in process memory."""
        return cls(
            persistent=EphemeralStore(),
            blob_store=BlobStore(":memory:"),
            config=config,
            event_bus=event_bus,
        )

    async def load(self) -> int:
        """Rebuild the in-memory index from the durable stores. Returns item count."""
        for store in (self.persistent, self.session):
            for key in await store.keys(ITEM_PREFIX):
                record = await store.get(key)
                if record is None:
                    continue
                item = StorageItem.model_validate(record)
                self._items[item.name] = item
            for key in await store.keys(BINDING_PREFIX):
                record = await store.get(key)
                if record is not None:
                    binding = VariableBinding.model_validate(record)
                    self._bindings[binding.node_id] = binding

        logger.info(f"✓ Loaded {len(self._items)} variables, {len(self._bindings)} bindings")
        return len(self._items)

    def close(self) -> None:
        if self.blob_store is not None:
            self.blob_store.close()

    # === LOOKUP ===

    def names(self) -> list[str]:
        return list(self._items)

    def has_item(self, name: str) -> bool:
        return name in self._items

    def get_item(self, name: str) -> StorageItem | None:
        """Metadata for a variable (value may be a reference), or None."""
        return self._items.get(name)

    def list_items(self) -> list[StorageItem]:
        return list(self._items.values())

    def _require(self, name: str) -> StorageItem:
        item = self._items.get(name)
        if item is None:
            raise VariableError(f"Unknown variable '{name}'", name=name)
        return item

    def _type_of(self, type_name: str) -> VariableType:
        var_type = self.types.get(type_name)
        if var_type is None:
            raise VariableError(f"Unknown variable type '{type_name}'")
        return var_type

    async def get_item_value(self, name: str) -> Any:
        """
        Materialized value of a variable, following references into the
        large-object tier.

        Raises:
            VariableError: unknown variable
            StorageBackendError: the payload's tier is unavailable
        """
        item = self._require(name)

        hit, value = self.cache.get(name)
        if hit:
            return copy.deepcopy(value) if isinstance(value, dict | list) else value

        value = await self._materialize(item)
        self._cache_value(item, value)
        return value

    # === WRITE OPERATIONS ===

    async def create_item(
        self,
        name: str,
        type: str,
        value: Any = None,
        *,
        description: str = "",
        popup_config: PopupConfig | dict | None = None,
        readonly: bool = False,
        overwrite: bool = False,
        mime_type: str | None = None,
        original_name: str | None = None,
        metadata: dict[str, Any] | None = None,
        downsize: bool | None = None,
    ) -> StorageItem:
        """
        Create a variable.

        Args:
            name: Identifier (letters, digits, underscores, CJK; no leading digit)
            type: Registered type name
            value: Raw value; None means the type's default
            overwrite: Update the existing variable instead of rejecting the name
            mime_type / original_name: Describe binary payloads
            downsize: Re-encode large images (defaults to the config setting)

        Raises:
            VariableError: bad name, duplicate name, bad value, value too large
            StorageBackendError: binary payload and no large-object tier
        """
        name = validate_variable_name(name)
        var_type = self._type_of(type)

        if name in self._items:
            if not overwrite:
                raise VariableError(f"Variable '{name}' already exists", name=name)
            if self._items[name].type != type:
                raise VariableError(
                    f"Variable '{name}' is {self._items[name].type}; delete it before "
                    f"re-creating as {type}",
                    name=name,
                )
            return await self.update_item(name, value, description=description or None)

        value = self._coerce(var_type, value, name)

        if isinstance(popup_config, dict):
            popup_config = PopupConfig.model_validate(popup_config)
        item = StorageItem(
            name=name,
            type=type,
            description=description,
            popup_config=popup_config
            or PopupConfig(timeout_ms=self.config.default_popup_timeout_ms),
            readonly=readonly,
            metadata=metadata or {},
        )

        await self._write_value(
            item, var_type, value, mime_type=mime_type, original_name=original_name, downsize=downsize
        )
        await self._persist_record(item)
        self._items[name] = item
        self._cache_value(item, value)

        logger.info(f"✓ Created variable '{name}' ({type}, {item.size} bytes, {self._tier_label(item)})")
        await self._notify(VariableAction.CREATED, item, None)
        return item

    async def update_item(
        self,
        name: str,
        value: Any,
        *,
        description: str | None = None,
        mime_type: str | None = None,
        original_name: str | None = None,
        downsize: bool | None = None,
    ) -> StorageItem:
        """
        Replace a variable's value, pushing the prior value into its history.

        Raises:
            VariableError: unknown or readonly variable, bad value, value too large
        """
        # concurrent writers of one variable must each see the other's payload
        async with self._update_locks.setdefault(name, asyncio.Lock()):
            return await self._update_item(
                name,
                value,
                description=description,
                mime_type=mime_type,
                original_name=original_name,
                downsize=downsize,
            )

    async def _update_item(
        self,
        name: str,
        value: Any,
        *,
        description: str | None,
        mime_type: str | None,
        original_name: str | None,
        downsize: bool | None,
    ) -> StorageItem:
        item = self._require(name)
        if item.readonly:
            raise VariableError(f"Variable '{name}' is readonly", name=name)

        var_type = self._type_of(item.type)
        value = self._coerce(var_type, value, name)
        previous = await self._previous_value(item)

        updated = item.model_copy(deep=True)
        old_value = item.value
        await self._write_value(
            updated, var_type, value, mime_type=mime_type, original_name=original_name, downsize=downsize
        )
        updated.updated = datetime.now()
        if description is not None:
            updated.description = description

        await self._persist_record(updated, previous=item)
        await self._release_payload(name, old_value, keep=updated.value)

        self._push_history(name, previous)
        self._items[name] = updated
        self.cache.discard(name)
        self._cache_value(updated, value)

        logger.debug(f"Updated variable '{name}' ({updated.size} bytes, {self._tier_label(updated)})")
        await self._notify(VariableAction.UPDATED, updated, previous)
        return updated

    async def delete_item(self, name: str) -> bool:
        """
        Remove a variable, its history, cache entry and any large-object payload.

        Raises:
            VariableError: unknown variable
        """
        item = self._require(name)
        previous = await self._previous_value(item)

        await self._release_payload(name, item.value, keep=None)
        if self.blob_store is not None:
            await self.blob_store.delete_media_for_item(name)
        await self._store_for(item).delete(ITEM_PREFIX + name)

        del self._items[name]
        self._history.pop(name, None)
        self._update_locks.pop(name, None)
        self.cache.discard(name)

        logger.info(f"✓ Deleted variable '{name}'")
        await self._notify(VariableAction.DELETED, item, previous)
        return True

    async def set_readonly(self, name: str, readonly: bool = True) -> StorageItem:
        item = self._require(name)
        item.readonly = readonly
        item.updated = datetime.now()
        await self._persist_record(item)
        return item

    async def update_popup_config(
        self,
        name: str,
        input_popup: bool | None = None,
        output_popup: bool | None = None,
        timeout_ms: int | None = None,
    ) -> PopupConfig:
        """Change when reads/writes of a variable stop at the interaction gate."""
        item = self._require(name)
        changes = {
            "input_popup": input_popup,
            "output_popup": output_popup,
            "timeout_ms": timeout_ms,
        }
        item.popup_config = item.popup_config.model_copy(
            update={k: v for k, v in changes.items() if v is not None}
        )
        await self._persist_record(item)
        return item.popup_config

    # === OWNED MEDIA ===

    async def store_media(
        self,
        owner: str,
        data: bytes,
        *,
        mime_type: str = "application/octet-stream",
        original_name: str | None = None,
        type_name: str = "image",
    ) -> MediaReference:
        """
        Store a binary payload that belongs to variable ``owner`` without
        creating a variable of its own (e.g. one element of an image array).

        Owned payloads are removed when the owner is deleted, or when an
        update of the owner no longer references them.
        """
        if self.blob_store is None:
            raise StorageBackendError(f"No large-object tier available for media of '{owner}'")

        media_id = f"{owner}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
        await self.blob_store.put_media(
            MediaRecord(
                media_id=media_id,
                item_name=owner,
                type=type_name,
                data=data,
                mime_type=mime_type,
                original_size=len(data),
                stored_size=len(data),
            )
        )
        return MediaReference(
            media_id=media_id,
            original_name=original_name or media_id,
            mime_type=mime_type,
            size=len(data),
        )

    async def get_media(self, media_id: str) -> bytes:
        if self.blob_store is None:
            raise StorageBackendError("Large-object tier unavailable")
        record = await self.blob_store.get_media(media_id)
        if record is None:
            raise StorageBackendError(f"Media {media_id} is missing")
        return record.data

    # === HISTORY & SUBSCRIPTIONS ===

    def get_history(self, name: str) -> list[HistoryEntry]:
        """Previous values, most recent first."""
        return list(self._history.get(name, ()))

    def _push_history(self, name: str, value: Any) -> None:
        ring = self._history.get(name)
        if ring is None:
            ring = deque(maxlen=self.config.history_capacity)
            self._history[name] = ring
        ring.appendleft(HistoryEntry(value=value))

    def subscribe(self, name: str, callback: VariableCallback) -> Callable[[], None]:
        """
        Call ``callback(action, item, previous_value)`` whenever ``name``
        is created, updated or deleted. Use ``"*"`` for every variable.

        Returns:
            A function that removes the subscription
        """
        self._subscriber_counter += 1
        token = self._subscriber_counter
        self._subscribers.setdefault(name, {})[token] = callback

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(name)
            if callbacks is not None:
                callbacks.pop(token, None)
                if not callbacks:
                    del self._subscribers[name]

        return unsubscribe

    async def _notify(self, action: VariableAction, item: StorageItem, previous: Any) -> None:
        callbacks = [
            *self._subscribers.get(item.name, {}).values(),
            *self._subscribers.get(ALL_VARIABLES, {}).values(),
        ]
        for callback in callbacks:
            try:
                callback(action, item, previous)
            except Exception as e:
                logger.error(f"Subscriber error for '{item.name}' ({action}): {e}")

        if self._event_bus is not None:
            await self._event_bus.emit_variable_changed(
                name=item.name, action=action.value, var_type=item.type, tier=item.tier.value
            )

    # === NODE BINDINGS ===

    def get_node_binding(self, node_id: str) -> VariableBinding | None:
        return self._bindings.get(node_id)

    def list_bindings(self) -> list[VariableBinding]:
        return list(self._bindings.values())

    async def configure_node_variables(
        self,
        node_id: str,
        input_mappings: dict[str, str] | None = None,
        output_mappings: dict[str, str] | None = None,
        output_parse: dict[str, dict[str, Any]] | None = None,
    ) -> VariableBinding:
        """Replace the node's port → variable mapping."""
        binding = VariableBinding(
            node_id=node_id,
            input_mappings=dict(input_mappings or {}),
            output_mappings=dict(output_mappings or {}),
            output_parse=dict(output_parse or {}),
        )
        await self._save_binding(binding)
        return binding

    async def set_node_input_variable(
        self, node_id: str, input_name: str, variable_name: str | None
    ) -> VariableBinding:
        binding = self._bindings.get(node_id) or VariableBinding(node_id=node_id)
        if variable_name:
            binding.input_mappings[input_name] = variable_name
        else:
            binding.input_mappings.pop(input_name, None)
        await self._save_binding(binding)
        return binding

    async def set_node_output_variable(
        self,
        node_id: str,
        output_name: str,
        variable_name: str | None,
        parse: dict[str, Any] | None = None,
    ) -> VariableBinding:
        binding = self._bindings.get(node_id) or VariableBinding(node_id=node_id)
        if variable_name:
            binding.output_mappings[output_name] = variable_name
        else:
            binding.output_mappings.pop(output_name, None)
        if parse is not None:
            binding.output_parse[output_name] = parse
        await self._save_binding(binding)
        return binding

    async def remove_node_binding(self, node_id: str) -> bool:
        if self._bindings.pop(node_id, None) is None:
            return False
        await self.persistent.delete(BINDING_PREFIX + node_id)
        return True

    async def _save_binding(self, binding: VariableBinding) -> None:
        binding.updated = datetime.now()
        self._bindings[binding.node_id] = binding
        await self.persistent.set(BINDING_PREFIX + binding.node_id, binding.model_dump(mode="json"))

    # === TEMPLATES ===

    async def resolve_template(self, text: str) -> str:
        """
        Substitute ``{{name}}`` / ``{{name.path[0]}}`` with variable values.

        Unknown variables and unresolvable paths are left as written.
        """
        values: dict[str, Any] = {}
        for root in template_references(text):
            if root not in self._items:
                continue
            try:
                values[root] = await self.get_item_value(root)
            except StorageBackendError as e:
                logger.warning(f"⚠ Could not resolve '{{{{{root}}}}}': {e}")
        return render_template(text, values)

    async def get_value_at(self, path: str) -> Any:
        """Value at ``name.path`` (None when missing)."""
        root = path.split(".", 1)[0].split("[", 1)[0]
        if root not in self._items:
            return None
        found, value = lookup_path({root: await self.get_item_value(root)}, path)
        return value if found else None

    # === EXPORT / IMPORT ===

    async def export_variables(self) -> dict[str, Any]:
        """
        Serialize all variables and bindings into one document.

        Inline and text-blob values are embedded; media stay as references
        (their payloads live in the large-object tier).
        """
        variables = []
        for item in self._items.values():
            record = item.model_dump(mode="json")
            if item.media_reference is None:
                try:
                    record["data"] = await self.get_item_value(item.name)
                except StorageBackendError as e:
                    logger.warning(f"⚠ Exporting '{item.name}' without its value: {e}")
            variables.append(record)

        return {
            "version": EXPORT_VERSION,
            "timestamp": datetime.now().isoformat(),
            "variables": variables,
            "bindings": [b.model_dump(mode="json") for b in self._bindings.values()],
        }

    async def import_variables(self, document: dict[str, Any], overwrite: bool = True) -> int:
        """
        Restore variables and bindings from an export document.

        Returns:
            Number of variables imported. Entries that fail validation are
            logged and skipped.
        """
        imported = 0
        for record in document.get("variables", []):
            name = record.get("name", "?")
            try:
                if "data" in record:
                    await self._import_value(record, overwrite)
                else:
                    await self._import_reference(record, overwrite)
                imported += 1
            except (VariableError, StorageBackendError) as e:
                logger.warning(f"⚠ Skipping variable '{name}' on import: {e}")

        for record in document.get("bindings", []):
            binding = VariableBinding.model_validate(record)
            await self._save_binding(binding)

        logger.info(f"✓ Imported {imported} variables")
        return imported

    async def _import_value(self, record: dict[str, Any], overwrite: bool) -> None:
        name = record["name"]
        if name in self._items and not overwrite:
            return
        if name in self._items and self._items[name].type != record["type"]:
            await self.delete_item(name)
        if name in self._items:
            if self._items[name].readonly:
                await self.set_readonly(name, False)
            await self.update_item(name, record["data"], description=record.get("description", ""))
            await self.update_popup_config(name, **record.get("popup_config", {}))
            if record.get("readonly"):
                await self.set_readonly(name, True)
            return
        await self.create_item(
            name,
            record["type"],
            record["data"],
            description=record.get("description", ""),
            popup_config=record.get("popup_config"),
            readonly=record.get("readonly", False),
            metadata=record.get("metadata"),
        )

    async def _import_reference(self, record: dict[str, Any], overwrite: bool) -> None:
        item = StorageItem.model_validate(record)
        if item.name in self._items and not overwrite:
            return
        reference = item.media_reference
        if reference is not None:
            if self.blob_store is None or await self.blob_store.get_media(reference.media_id) is None:
                raise StorageBackendError(f"media payload {reference.media_id} is not available")
        await self._persist_record(item)
        self._items[item.name] = item
        self.cache.discard(item.name)

    # === STATISTICS ===

    async def get_statistics(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        by_tier: dict[str, int] = {}
        for item in self._items.values():
            by_type[item.type] = by_type.get(item.type, 0) + 1
            label = self._tier_label(item)
            by_tier[label] = by_tier.get(label, 0) + 1

        stats: dict[str, Any] = {
            "total_items": len(self._items),
            "total_size": sum(item.size for item in self._items.values()),
            "bindings": len(self._bindings),
            "by_type": by_type,
            "by_tier": by_tier,
            "memory": self.cache.get_stats(),
            "large_object_tier": None,
        }
        if self.blob_store is not None:
            stats["large_object_tier"] = await self.blob_store.stats()
        return stats

    # === INTERNALS ===

    def _coerce(self, var_type: VariableType, value: Any, name: str) -> Any:
        if value is None:
            return var_type.default()
        if not var_type.validator(value):
            raise VariableError(
                f"Value of type {type(value).__name__} is not valid for {var_type.name} variable '{name}'",
                name=name,
            )
        value = var_type.parser(value)
        if var_type.kind == ValueKind.STRUCTURED:
            try:
                json.dumps(value, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                raise VariableError(f"Value for '{name}' is not JSON-serializable: {e}", name=name) from e
        if var_type.max_size is not None:
            size = compute_size(value)
            if size > var_type.max_size:
                raise VariableError(
                    f"Value for '{name}' is {size} bytes; {var_type.name} allows {var_type.max_size}",
                    name=name,
                )
        return value

    @staticmethod
    def _tier_label(item: StorageItem) -> str:
        if item.variant is None:
            return item.tier.value
        return f"{item.tier.value}/{item.variant.value}"

    def _store_for(self, item: StorageItem) -> KeyValueStore:
        if item.tier == StorageTier.DURABLE_SMALL and item.variant == TierVariant.SESSION:
            return self.session
        return self.persistent

    async def _write_value(
        self,
        item: StorageItem,
        var_type: VariableType,
        value: Any,
        *,
        mime_type: str | None,
        original_name: str | None,
        downsize: bool | None,
    ) -> None:
        """Place ``value`` in its tier and point ``item.value`` at it."""
        size = compute_size(value)
        tier, variant = select_tier(var_type, size)

        if tier == StorageTier.DURABLE_LARGE and self.blob_store is None:
            if isinstance(value, bytes | MediaReference):
                raise StorageBackendError(
                    f"No large-object tier available for binary variable '{item.name}'"
                )
            logger.warning(f"⚠ Large-object tier unavailable, keeping '{item.name}' in the persistent tier")
            tier, variant = StorageTier.DURABLE_SMALL, TierVariant.PERSISTENT

        item.size = size
        item.tier = tier
        item.variant = variant

        if tier == StorageTier.DURABLE_LARGE:
            item.value = await self._write_large(item, var_type, value, mime_type, original_name, downsize)
        elif isinstance(value, dict | list):
            item.value = StructuredValue(value=value)
        else:
            item.value = ScalarValue(value=value)

    async def _write_large(
        self,
        item: StorageItem,
        var_type: VariableType,
        value: Any,
        mime_type: str | None,
        original_name: str | None,
        downsize: bool | None,
    ) -> StoredValue:
        assert self.blob_store is not None

        if isinstance(value, MediaReference):
            return MediaRefValue(reference=value)

        if isinstance(value, bytes):
            return await self._write_media(item, var_type, value, mime_type, original_name, downsize)

        if isinstance(value, str):
            text, encoding = value, "text"
        else:
            text, encoding = json.dumps(value, ensure_ascii=False, default=str), "json"

        payload, compressed = compress_text(text, self.config.compression_threshold)
        await self.blob_store.put_item(
            BlobRow(name=item.name, payload=payload, encoding=encoding, compressed=compressed)
        )
        return TextBlobValue(key=item.name, encoding=encoding, compressed=compressed, length=len(text))

    async def _write_media(
        self,
        item: StorageItem,
        var_type: VariableType,
        data: bytes,
        mime_type: str | None,
        original_name: str | None,
        downsize: bool | None,
    ) -> MediaRefValue:
        assert self.blob_store is not None

        mime = mime_type or "application/octet-stream"
        stored = data
        should_downsize = self.config.downsize_images if downsize is None else downsize
        if (
            should_downsize
            and var_type.name == "image"
            and len(data) > self.config.image_resize_threshold
        ):
            resized = await asyncio.to_thread(
                downsize_image,
                data,
                self.config.image_max_width,
                self.config.image_max_height,
                self.config.image_quality,
            )
            if resized is not None:
                stored, mime = resized

        media_id = f"{item.name}_{int(time.time() * 1000)}"
        existing = item.media_reference
        if existing is not None and existing.media_id == media_id:
            media_id += "_1"

        await self.blob_store.put_media(
            MediaRecord(
                media_id=media_id,
                item_name=item.name,
                type=var_type.name,
                data=stored,
                mime_type=mime,
                original_size=len(data),
                stored_size=len(stored),
            )
        )
        return MediaRefValue(
            reference=MediaReference(
                media_id=media_id,
                original_name=original_name or item.name,
                mime_type=mime,
                size=len(stored),
            )
        )

    async def _materialize(self, item: StorageItem) -> Any:
        """Read the value behind ``item.value``."""
        stored = item.value

        if isinstance(stored, ScalarValue | StructuredValue):
            record = await self._store_for(item).get(ITEM_PREFIX + item.name)
            if record is None:
                return copy.deepcopy(stored.value)
            return StorageItem.model_validate(record).value.value  # type: ignore[union-attr]

        if self.blob_store is None:
            raise StorageBackendError(f"Large-object tier unavailable for '{item.name}'")

        if isinstance(stored, TextBlobValue):
            row = await self.blob_store.get_item(stored.key)
            if row is None:
                raise StorageBackendError(f"Payload for '{item.name}' is missing")
            text = decompress_text(row.payload, row.compressed)
            return json.loads(text) if row.encoding == "json" else text

        media = await self.blob_store.get_media(stored.reference.media_id)
        if media is None:
            raise StorageBackendError(
                f"Media {stored.reference.media_id} for '{item.name}' is missing"
            )
        return media.data

    async def _previous_value(self, item: StorageItem) -> Any:
        """Prior value for history and callbacks; media keep only their reference."""
        reference = item.media_reference
        if reference is not None:
            return reference
        try:
            return await self.get_item_value(item.name)
        except StorageBackendError as e:
            logger.warning(f"⚠ Previous value of '{item.name}' unavailable: {e}")
            return None

    async def _persist_record(self, item: StorageItem, previous: StorageItem | None = None) -> None:
        store = self._store_for(item)
        await store.set(ITEM_PREFIX + item.name, item.model_dump(mode="json"))
        if previous is not None:
            old_store = self._store_for(previous)
            if old_store is not store:
                await old_store.delete(ITEM_PREFIX + item.name)

    async def _release_payload(self, name: str, old: StoredValue, keep: StoredValue | None) -> None:
        """Drop a large-object payload that the new value no longer points at."""
        if self.blob_store is None:
            return
        if isinstance(old, MediaRefValue):
            if not (isinstance(keep, MediaRefValue) and keep.reference.media_id == old.reference.media_id):
                await self.blob_store.delete_media(old.reference.media_id)
        elif isinstance(old, TextBlobValue) and not isinstance(keep, TextBlobValue):
            await self.blob_store.delete_item(old.key)
        elif isinstance(old, StructuredValue):
            kept = _embedded_media_ids(keep.value) if isinstance(keep, StructuredValue) else set()
            for media_id in _embedded_media_ids(old.value) - kept:
                await self.blob_store.delete_media(media_id)

    def _cache_value(self, item: StorageItem, value: Any) -> None:
        if item.tier == StorageTier.DURABLE_LARGE or item.size >= LARGE_OBJECT_THRESHOLD:
            return
        if isinstance(value, dict | list):
            value = copy.deepcopy(value)
        self.cache.put(item.name, value, item.size)
