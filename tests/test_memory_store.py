"""
Tests for db.memory: the in-process store and its atomic batches.
"""

import pytest

from equiplend.core.exceptions import NotFoundError
from equiplend.db.memory import MemoryStore
from equiplend.db.store import WriteBatch, WriteConflict


@pytest.fixture
async def filled():
    store = MemoryStore()
    await store.put("things", "t1", {"name": "one", "count": 1, "version": 1})
    await store.put("things", "t2", {"name": "two", "count": 0, "version": 1})
    return store


class TestReads:
    async def test_get_returns_copy(self, filled):
        doc = await filled.get("things", "t1")
        doc["name"] = "changed"
        assert (await filled.get("things", "t1"))["name"] == "one"

    async def test_get_missing(self, filled):
        assert await filled.get("things", "nope") is None

    async def test_get_many_skips_missing(self, filled):
        found = await filled.get_many("things", ["t1", "nope"])
        assert list(found) == ["t1"]

    async def test_find_filters_and_limits(self, filled):
        assert [d["name"] for d in await filled.find("things", {"count": 0})] == ["two"]
        assert len(await filled.find("things", limit=1)) == 1
        assert await filled.find("empty") == []


class TestPatch:
    async def test_merges_fields(self, filled):
        await filled.patch("things", "t1", {"count": 5})
        assert await filled.get("things", "t1") == {"name": "one", "count": 5, "version": 1}

    async def test_unknown_key(self, filled):
        with pytest.raises(NotFoundError):
            await filled.patch("things", "nope", {"count": 1})


class TestCommit:
    async def test_applies_every_op(self, filled):
        batch = (WriteBatch()
                 .update("things", "t1", {"name": "uno"}, expect={"version": 1})
                 .increment("things", "t2", "count", 3, flag="in_stock")
                 .insert("other", "o1", {"x": 1}))
        await filled.commit(batch)
        assert (await filled.get("things", "t1"))["name"] == "uno"
        t2 = await filled.get("things", "t2")
        assert t2["count"] == 3
        assert t2["in_stock"] is True
        assert await filled.get("other", "o1") == {"x": 1}

    async def test_failed_expectation_applies_nothing(self, filled):
        batch = (WriteBatch()
                 .insert("other", "o1", {"x": 1})
                 .update("things", "t1", {"name": "uno"})
                 .update("things", "t2", {"name": "dos"}, expect={"version": 7}))
        with pytest.raises(WriteConflict) as exc:
            await filled.commit(batch)
        assert exc.value.key == "t2"
        assert (await filled.get("things", "t1"))["name"] == "one"
        assert await filled.get("other", "o1") is None

    async def test_update_of_missing_document(self, filled):
        with pytest.raises(WriteConflict, match="not found"):
            await filled.commit(WriteBatch().update("things", "ghost", {"name": "x"}))

    async def test_duplicate_insert(self, filled):
        with pytest.raises(WriteConflict, match="already exists"):
            await filled.commit(WriteBatch().insert("things", "t1", {"name": "again"}))

    async def test_flag_follows_counter(self, filled):
        await filled.commit(WriteBatch().increment("things", "t1", "count", -1, flag="in_stock"))
        assert (await filled.get("things", "t1"))["in_stock"] is False

    async def test_empty_batch_is_a_no_op(self, filled):
        await filled.commit(WriteBatch())
        assert len(await filled.find("things")) == 2

    async def test_delete_with_guard(self, filled):
        with pytest.raises(WriteConflict, match="expected version"):
            await filled.commit(WriteBatch().delete("things", "t1", expect={"version": 2}))
        assert await filled.get("things", "t1") is not None
        await filled.commit(WriteBatch().delete("things", "t1", expect={"version": 1}))
        assert await filled.get("things", "t1") is None

    async def test_delete_of_missing_document(self, filled):
        with pytest.raises(WriteConflict, match="not found"):
            await filled.commit(WriteBatch().delete("things", "ghost"))
