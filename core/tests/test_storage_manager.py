"""
Tests for StorageManager.

Covers:
- Create/read/update/delete and value parsing
- Tier placement and migration between tiers
- History ring, subscriptions, readonly
- Node bindings, templates, export/import, reload from disk
- Degraded mode without a large-object tier
- Serializability checks, concurrent updates, LRU order under a memory budget
"""

import asyncio
from pathlib import Path

import pytest

from nodeflow.config import MiB, StorageConfig
from nodeflow.errors import StorageBackendError, VariableError
from nodeflow.schemas.storage_item import (
    MediaReference,
    PopupConfig,
    StorageTier,
    TextBlobValue,
    TierVariant,
)
from nodeflow.storage.backends import EphemeralStore
from nodeflow.storage.manager import StorageManager, VariableAction, select_tier
from nodeflow.storage.types import StorageAffinity, ValueKind, VariableType

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# === CRUD ===


class TestCreateAndRead:
    """Values come back as the type's parser produced them."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "type_name, raw, expected",
        [
            ("string", "hello", "hello"),
            ("number", "3.5", 3.5),
            ("number", 7, 7),
            ("boolean", "true", True),
            ("object", '{"a": 1}', {"a": 1}),
            ("array", (1, 2), [1, 2]),
        ],
    )
    async def test_round_trip(self, storage, type_name, raw, expected):
        await storage.create_item("v", type_name, raw)
        assert await storage.get_item_value("v") == expected

    @pytest.mark.asyncio
    async def test_none_means_type_default(self, storage):
        await storage.create_item("count", "number")
        await storage.create_item("tags", "array")
        assert await storage.get_item_value("count") == 0
        assert await storage.get_item_value("tags") == []

    @pytest.mark.asyncio
    async def test_cached_structures_are_copies(self, storage):
        await storage.create_item("cfg", "object", {"a": 1})
        value = await storage.get_item_value("cfg")
        value["a"] = 99
        assert await storage.get_item_value("cfg") == {"a": 1}

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, storage):
        await storage.create_item("v", "string", "a")
        with pytest.raises(VariableError):
            await storage.create_item("v", "string", "b")

    @pytest.mark.asyncio
    async def test_overwrite_updates(self, storage):
        await storage.create_item("v", "string", "a")
        await storage.create_item("v", "string", "b", overwrite=True)
        assert await storage.get_item_value("v") == "b"
        assert [h.value for h in storage.get_history("v")] == ["a"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "1abc", "has space", "dash-ed"])
    async def test_invalid_names(self, storage, name):
        with pytest.raises(VariableError):
            await storage.create_item(name, "string", "x")

    @pytest.mark.asyncio
    async def test_cjk_name(self, storage):
        await storage.create_item("变量", "string", "ok")
        assert await storage.get_item_value("变量") == "ok"

    @pytest.mark.asyncio
    async def test_invalid_value(self, storage):
        with pytest.raises(VariableError):
            await storage.create_item("n", "number", "not a number")

    @pytest.mark.asyncio
    async def test_unknown_type(self, storage):
        with pytest.raises(VariableError):
            await storage.create_item("v", "hologram", "x")

    @pytest.mark.asyncio
    async def test_size_limit(self, storage):
        storage.types.register(
            VariableType("tiny", "Tiny", ValueKind.SCALAR, str, lambda v: isinstance(v, str), str, max_size=4)
        )
        with pytest.raises(VariableError):
            await storage.create_item("t", "tiny", "too long")

    @pytest.mark.asyncio
    async def test_unknown_variable(self, storage):
        with pytest.raises(VariableError):
            await storage.get_item_value("ghost")
        with pytest.raises(VariableError):
            await storage.delete_item("ghost")


# === TIERS ===


class TestTierPlacement:
    """Placement is a function of (type affinity, size)."""

    def test_select_tier(self, storage):
        string = storage.types.get("string")
        image = storage.types.get("image")

        assert select_tier(string, 10) == (StorageTier.DURABLE_SMALL, TierVariant.PERSISTENT)
        assert select_tier(string, 1024) == (StorageTier.DURABLE_SMALL, TierVariant.PERSISTENT)
        assert select_tier(string, 1025) == (StorageTier.DURABLE_SMALL, TierVariant.SESSION)
        assert select_tier(string, MiB + 1) == (StorageTier.DURABLE_LARGE, None)
        assert select_tier(image, 10) == (StorageTier.DURABLE_LARGE, None)

    @pytest.mark.asyncio
    async def test_small_value_is_persistent(self, storage):
        item = await storage.create_item("note", "string", "short")
        assert (item.tier, item.variant) == (StorageTier.DURABLE_SMALL, TierVariant.PERSISTENT)
        assert await storage.persistent.get("item_note") is not None

    @pytest.mark.asyncio
    async def test_growing_value_moves_to_session(self, storage):
        await storage.create_item("note", "string", "short")
        item = await storage.update_item("note", "x" * 2000)

        assert item.variant == TierVariant.SESSION
        assert await storage.persistent.get("item_note") is None
        assert await storage.session.get("item_note") is not None
        assert await storage.get_item_value("note") == "x" * 2000

    @pytest.mark.asyncio
    async def test_large_text_is_compressed_out_of_line(self, storage):
        text = "lorem ipsum " * (MiB // 10)
        item = await storage.create_item("book", "string", text)

        assert item.tier == StorageTier.DURABLE_LARGE
        assert isinstance(item.value, TextBlobValue)
        assert item.value.compressed
        assert "book" not in storage.cache
        assert await storage.get_item_value("book") == text

    @pytest.mark.asyncio
    async def test_large_text_shrinking_frees_blob(self, storage):
        await storage.create_item("book", "string", "a" * (MiB + 10))
        await storage.update_item("book", "short now")

        assert storage.get_item("book").tier == StorageTier.DURABLE_SMALL
        assert await storage.blob_store.get_item("book") is None

    @pytest.mark.asyncio
    async def test_image_is_a_media_reference(self, storage):
        item = await storage.create_item("photo", "image", PNG, mime_type="image/png", original_name="p.png")

        reference = item.media_reference
        assert reference is not None
        assert reference.mime_type == "image/png"
        assert reference.original_name == "p.png"
        assert reference.size == len(PNG)
        assert await storage.get_item_value("photo") == PNG

    @pytest.mark.asyncio
    async def test_image_update_releases_old_media_and_keeps_reference_in_history(self, storage):
        first = await storage.create_item("photo", "image", PNG, mime_type="image/png")
        old_id = first.media_reference.media_id

        await storage.update_item("photo", PNG + b"\x01", mime_type="image/png")

        assert await storage.blob_store.get_media(old_id) is None
        history = storage.get_history("photo")
        assert isinstance(history[0].value, MediaReference)
        assert history[0].value.media_id == old_id

    @pytest.mark.asyncio
    async def test_delete_removes_payload(self, storage):
        item = await storage.create_item("photo", "image", PNG)
        media_id = item.media_reference.media_id

        assert await storage.delete_item("photo") is True
        assert not storage.has_item("photo")
        assert await storage.blob_store.get_media(media_id) is None


class TestWithoutLargeObjectTier:
    """The manager keeps working when the blob store is unavailable."""

    @pytest.fixture
    def degraded(self, storage_config):
        return StorageManager(persistent=EphemeralStore(), blob_store=None, config=storage_config)

    @pytest.mark.asyncio
    async def test_large_text_falls_back_to_persistent(self, degraded):
        text = "z" * (MiB + 1)
        item = await degraded.create_item("big", "string", text)

        assert (item.tier, item.variant) == (StorageTier.DURABLE_SMALL, TierVariant.PERSISTENT)
        assert await degraded.get_item_value("big") == text

    @pytest.mark.asyncio
    async def test_binary_has_no_fallback(self, degraded):
        with pytest.raises(StorageBackendError):
            await degraded.create_item("photo", "image", PNG)

    @pytest.mark.asyncio
    async def test_statistics_report_missing_tier(self, degraded):
        await degraded.create_item("a", "string", "x")
        stats = await degraded.get_statistics()
        assert stats["large_object_tier"] is None
        assert stats["total_items"] == 1


# === HISTORY, SUBSCRIPTIONS, READONLY ===


class TestHistoryAndSubscriptions:
    """Change tracking."""

    @pytest.mark.asyncio
    async def test_history_is_bounded_most_recent_first(self, storage):
        await storage.create_item("n", "number", 0)
        for i in range(1, 13):
            await storage.update_item("n", i)

        history = [entry.value for entry in storage.get_history("n")]
        assert history == [11, 10, 9, 8, 7, 6, 5, 4, 3, 2]

    @pytest.mark.asyncio
    async def test_subscribers_see_every_change(self, storage):
        seen = []
        unsubscribe = storage.subscribe("v", lambda action, item, prev: seen.append((action, prev)))

        await storage.create_item("v", "string", "a")
        await storage.update_item("v", "b")
        await storage.delete_item("v")
        unsubscribe()
        await storage.create_item("v", "string", "c")

        assert seen == [
            (VariableAction.CREATED, None),
            (VariableAction.UPDATED, "a"),
            (VariableAction.DELETED, "b"),
        ]

    @pytest.mark.asyncio
    async def test_wildcard_subscription_and_failing_callback(self, storage):
        names = []

        def broken(action, item, prev):
            raise RuntimeError("subscriber bug")

        storage.subscribe("*", broken)
        storage.subscribe("*", lambda action, item, prev: names.append(item.name))

        await storage.create_item("a", "string", "1")
        await storage.create_item("b", "string", "2")
        assert names == ["a", "b"]

    @pytest.mark.asyncio
    async def test_readonly_blocks_updates(self, storage):
        await storage.create_item("const", "number", 1, readonly=True)
        with pytest.raises(VariableError):
            await storage.update_item("const", 2)

        await storage.set_readonly("const", False)
        await storage.update_item("const", 2)
        assert await storage.get_item_value("const") == 2

    @pytest.mark.asyncio
    async def test_popup_config_update(self, storage):
        await storage.create_item("v", "string", "a")
        assert storage.get_item("v").popup_config.timeout_ms == storage.config.default_popup_timeout_ms

        config = await storage.update_popup_config("v", output_popup=True, timeout_ms=500)
        assert config == PopupConfig(input_popup=False, output_popup=True, timeout_ms=500)


# === BINDINGS & TEMPLATES ===


class TestBindingsAndTemplates:
    """Per-node mappings and {{...}} substitution."""

    @pytest.mark.asyncio
    async def test_configure_and_remove_binding(self, storage):
        await storage.configure_node_variables("n1", {"prompt": "topic"}, {"text": "summary"})
        await storage.set_node_output_variable("n1", "text", None)

        binding = storage.get_node_binding("n1")
        assert binding.input_variable("prompt") == "topic"
        assert binding.output_variable("text") is None
        assert await storage.persistent.get("binding_n1") is not None

        assert await storage.remove_node_binding("n1") is True
        assert storage.get_node_binding("n1") is None
        assert await storage.remove_node_binding("n1") is False

    @pytest.mark.asyncio
    async def test_resolve_template(self, storage):
        await storage.create_item("user", "object", {"name": "Ada", "langs": ["en", "fr"]})
        await storage.create_item("flag", "boolean", True)

        text = await storage.resolve_template("{{user.name}} speaks {{user.langs[1]}}, {{flag}}, {{missing}}")
        assert text == "Ada speaks fr, true, {{missing}}"

    @pytest.mark.asyncio
    async def test_get_value_at(self, storage):
        await storage.create_item("user", "object", {"name": "Ada"})
        assert await storage.get_value_at("user.name") == "Ada"
        assert await storage.get_value_at("user.age") is None
        assert await storage.get_value_at("nobody.name") is None


# === EXPORT / IMPORT / RELOAD ===


class TestPortability:
    """Export documents and restart recovery."""

    @pytest.mark.asyncio
    async def test_export_import(self, storage, storage_config):
        await storage.create_item("greeting", "string", "hi", description="hello text")
        await storage.create_item("cfg", "object", {"a": [1, 2]}, readonly=True)
        await storage.create_item("photo", "image", PNG)
        await storage.configure_node_variables("n1", output_mappings={"text": "greeting"})

        document = await storage.export_variables()
        assert document["version"] == "1.0.0"
        photo = next(v for v in document["variables"] if v["name"] == "photo")
        assert "data" not in photo

        target = StorageManager.in_memory(config=storage_config)
        try:
            # the target's blob store does not hold the photo payload
            assert await target.import_variables(document) == 2
            assert await target.get_item_value("greeting") == "hi"
            assert target.get_item("greeting").description == "hello text"
            assert await target.get_item_value("cfg") == {"a": [1, 2]}
            assert target.get_item("cfg").readonly
            assert not target.has_item("photo")
            assert target.get_node_binding("n1").output_variable("text") == "greeting"
        finally:
            target.close()

    @pytest.mark.asyncio
    async def test_import_into_self_restores_media_reference(self, storage):
        await storage.create_item("photo", "image", PNG)
        document = await storage.export_variables()

        assert await storage.import_variables(document) == 1
        assert await storage.get_item_value("photo") == PNG

    @pytest.mark.asyncio
    async def test_reload_from_disk(self, tmp_path: Path):
        config = StorageConfig(storage_dir=tmp_path)
        first = StorageManager.open(tmp_path, config=config)
        await first.create_item("kept", "string", "persistent value")
        await first.create_item("session_only", "string", "s" * 2000)
        await first.create_item("book", "string", "b" * (MiB + 1))
        await first.set_node_input_variable("n1", "prompt", "kept")
        first.close()

        second = StorageManager.open(tmp_path, config=config)
        try:
            assert await second.load() == 2
            assert await second.get_item_value("kept") == "persistent value"
            assert await second.get_item_value("book") == "b" * (MiB + 1)
            assert not second.has_item("session_only")
            assert second.get_node_binding("n1").input_variable("prompt") == "kept"
        finally:
            second.close()

    @pytest.mark.asyncio
    async def test_statistics(self, storage):
        await storage.create_item("a", "string", "x")
        await storage.create_item("photo", "image", PNG)
        stats = await storage.get_statistics()

        assert stats["total_items"] == 2
        assert stats["by_type"] == {"string": 1, "image": 1}
        assert stats["by_tier"] == {"durable-small/persistent": 1, "durable-large": 1}
        assert stats["large_object_tier"]["media"] == 1


class TestCustomTypes:
    """Registered types take part in placement."""

    @pytest.mark.asyncio
    async def test_large_object_affinity(self, storage):
        storage.types.register(
            VariableType(
                "transcript",
                "Transcript",
                ValueKind.TEXT,
                str,
                lambda v: isinstance(v, str),
                str,
                affinity=StorageAffinity.LARGE_OBJECT,
            )
        )
        item = await storage.create_item("t", "transcript", "tiny")
        assert item.tier == StorageTier.DURABLE_LARGE
        assert await storage.get_item_value("t") == "tiny"


class TestValueValidation:
    """Structured values must serialize before anything is written."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "type_name,value",
        [("object", {"o": object()}), ("object", {"raw": b"\xff\xfe"}), ("array", [object()])],
    )
    async def test_unserializable_structures_rejected(self, storage, type_name, value):
        with pytest.raises(VariableError):
            await storage.create_item("v", type_name, value)

        assert not storage.has_item("v")
        tier = await storage.blob_store.stats()
        assert tier["items"] == 0
        assert tier["media"] == 0

    @pytest.mark.asyncio
    async def test_unserializable_update_keeps_prior_value(self, storage):
        await storage.create_item("cfg", "object", {"a": 1})

        with pytest.raises(VariableError):
            await storage.update_item("cfg", {"a": object()})

        assert await storage.get_item_value("cfg") == {"a": 1}
        assert storage.get_history("cfg") == []


class TestConcurrentUpdates:
    @pytest.mark.asyncio
    async def test_concurrent_media_updates_leave_one_payload(self, storage):
        await storage.create_item("photo", "image", PNG, mime_type="image/png")

        await asyncio.gather(
            storage.update_item("photo", PNG + b"\x01", mime_type="image/png"),
            storage.update_item("photo", PNG + b"\x02", mime_type="image/png"),
        )

        assert (await storage.blob_store.stats())["media"] == 1
        assert await storage.get_item_value("photo") == PNG + b"\x02"
        assert len(storage.get_history("photo")) == 2


class TestMemoryBudget:
    """Reads through the manager keep the LRU order."""

    @pytest.fixture
    def small_cache(self, tmp_path: Path):
        manager = StorageManager.in_memory(config=StorageConfig(storage_dir=tmp_path, memory_budget=30))
        yield manager
        manager.close()

    @pytest.mark.asyncio
    async def test_read_moves_item_to_most_recently_used(self, small_cache):
        for name in ("a", "b", "c"):
            await small_cache.create_item(name, "string", name * 10)
        assert small_cache.cache.keys() == ["a", "b", "c"]

        await small_cache.get_item_value("a")
        await small_cache.create_item("d", "string", "d" * 10)

        assert small_cache.cache.keys() == ["c", "a", "d"]

    @pytest.mark.asyncio
    async def test_evicted_item_is_read_back_and_recached(self, small_cache):
        for name in ("a", "b", "c", "d"):
            await small_cache.create_item(name, "string", name * 10)
        assert "a" not in small_cache.cache

        assert await small_cache.get_item_value("a") == "a" * 10
        assert small_cache.cache.keys() == ["c", "d", "a"]
