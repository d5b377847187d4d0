"""
Unit tests for the SQLite record store.

Tests cover:
- Record CRUD operations
- Patch semantics on update
- Unique field enforcement and rollback
- Uninitialized store handling
- Equality prefilters on list
"""

import tempfile
from pathlib import Path

import pytest

from baas.aivora_server.errors import DuplicateRecordError, StoreNotInitializedError
from baas.aivora_server.storage.record_store import (
    RecordStore,
    is_valid_record_id,
    new_record_id,
)


class TestRecordStore:
    """Tests for RecordStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def store(self, data_dir):
        return RecordStore(data_dir / "aivora.db", wal_mode=False)

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        await store.initialize()

        stored = await store.insert_record("Task", {"title": "Ship it", "extra": [1, 2]})

        assert is_valid_record_id(stored.record_id)
        fetched = await store.get_record("Task", stored.record_id)
        assert fetched is not None
        assert fetched.payload == {"title": "Ship it", "extra": [1, 2]}
        assert fetched.to_record() == {"id": stored.record_id, "title": "Ship it", "extra": [1, 2]}

    @pytest.mark.asyncio
    async def test_kinds_are_separate(self, store):
        await store.initialize()
        stored = await store.insert_record("Task", {"title": "a"})

        assert await store.get_record("Project", stored.record_id) is None
        assert await store.count_records("Task") == 1
        assert await store.count_records("Project") == 0

    @pytest.mark.asyncio
    async def test_update_merges_payload(self, store):
        await store.initialize()
        stored = await store.insert_record("Task", {"title": "a", "status": "todo"})

        updated = await store.update_record("Task", stored.record_id, {"status": "done"})

        assert updated.payload == {"title": "a", "status": "done"}
        fetched = await store.get_record("Task", stored.record_id)
        assert fetched.payload == {"title": "a", "status": "done"}

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self, store):
        await store.initialize()
        assert await store.update_record("Task", new_record_id(), {"a": 1}) is None

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.initialize()
        stored = await store.insert_record("Task", {"title": "a"})

        assert await store.delete_record("Task", stored.record_id) is True
        assert await store.delete_record("Task", stored.record_id) is False
        assert await store.get_record("Task", stored.record_id) is None

    @pytest.mark.asyncio
    async def test_list_in_insertion_order(self, store):
        await store.initialize()
        ids = [
            (await store.insert_record("Task", {"n": n})).record_id
            for n in range(5)
        ]

        records = await store.list_records("Task")

        assert [r.record_id for r in records] == ids

    @pytest.mark.asyncio
    async def test_list_with_equality_filter(self, store):
        await store.initialize()
        await store.insert_record("User", {"email": "a@x.io"})
        b = await store.insert_record("User", {"email": "b@x.io"})
        tagged = await store.insert_record("User", {"aliases": ["b@x.io", "c@x.io"]})
        await store.insert_record("Invite", {"email": "b@x.io"})

        records = await store.list_records("User", equals={"email": "b@x.io"})
        assert [r.record_id for r in records] == [b.record_id]

        records = await store.list_records("User", equals={"aliases": "c@x.io"})
        assert [r.record_id for r in records] == [tagged.record_id]

    @pytest.mark.asyncio
    async def test_list_rejects_unsafe_field_name(self, store):
        await store.initialize()
        with pytest.raises(ValueError):
            await store.list_records("User", equals={"email') OR 1=1 --": "x"})

    @pytest.mark.asyncio
    async def test_unique_violation(self, store):
        await store.initialize()
        await store.insert_record("User", {"email": "a@x.io"}, unique={"email": "a@x.io"})

        with pytest.raises(DuplicateRecordError) as exc_info:
            await store.insert_record("User", {"email": "a@x.io"}, unique={"email": "a@x.io"})

        assert exc_info.value.field_name == "email"
        assert await store.count_records("User") == 1

    @pytest.mark.asyncio
    async def test_unique_is_per_kind(self, store):
        await store.initialize()
        await store.insert_record("User", {"email": "a@x.io"}, unique={"email": "a@x.io"})
        await store.insert_record("Invite", {"email": "a@x.io"}, unique={"email": "a@x.io"})
        assert await store.count_records() == 2

    @pytest.mark.asyncio
    async def test_update_unique_excludes_self(self, store):
        await store.initialize()
        stored = await store.insert_record("User", {"email": "a@x.io"}, unique={"email": "a@x.io"})
        other = await store.insert_record("User", {"email": "b@x.io"}, unique={"email": "b@x.io"})

        await store.update_record(
            "User", stored.record_id, {"email": "a@x.io"}, unique={"email": "a@x.io"}
        )
        with pytest.raises(DuplicateRecordError):
            await store.update_record(
                "User", other.record_id, {"email": "a@x.io"}, unique={"email": "a@x.io"}
            )

    @pytest.mark.asyncio
    async def test_batch_insert_rolls_back(self, store):
        await store.initialize()

        with pytest.raises(DuplicateRecordError):
            await store.insert_records(
                "User",
                [{"email": "a@x.io"}, {"email": "a@x.io"}],
                unique=[{"email": "a@x.io"}, {"email": "a@x.io"}],
            )

        assert await store.count_records("User") == 0

    @pytest.mark.asyncio
    async def test_uninitialized_store_raises(self, store):
        with pytest.raises(StoreNotInitializedError):
            await store.get_record("Task", new_record_id())

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        await store.insert_record("Task", {"title": "a"})
        await store.initialize()
        assert await store.count_records("Task") == 1

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.initialize()
        await store.insert_record("Task", {})
        await store.insert_record("Task", {})
        await store.insert_record("Project", {})
        assert await store.get_stats() == {"Task": 2, "Project": 1}


class TestRecordIds:
    """Tests for record id helpers."""

    def test_new_ids_are_valid(self):
        assert is_valid_record_id(new_record_id())
        assert new_record_id() != new_record_id()

    @pytest.mark.parametrize("value", [None, "", "abc", 42, "Z" * 32, "a" * 33])
    def test_invalid_ids(self, value):
        assert not is_valid_record_id(value)
