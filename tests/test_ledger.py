"""
Tests for services.ledger: availability of serialized asset units.
"""

import pytest

from equiplend.core.exceptions import ValidationError
from equiplend.db.store import ASSET_UNITS, WriteBatch, WriteConflict


class TestMarkUnavailable:
    async def test_marks_known_codes(self, ledger):
        result = await ledger.mark_unavailable(["A1", "A2"])
        assert result.matched == ["A1", "A2"]
        assert result.skipped == []
        assert not await ledger.is_available("A1")
        assert not await ledger.is_available("A2")
        assert await ledger.is_available("A3")

    async def test_is_idempotent(self, ledger):
        await ledger.mark_unavailable(["A1"])
        result = await ledger.mark_unavailable(["A1"])
        assert result.matched == ["A1"]
        assert not await ledger.is_available("A1")

    async def test_unknown_codes_are_skipped(self, ledger):
        result = await ledger.mark_unavailable(["A1", "ZZ9"])
        assert result.matched == ["A1"]
        assert result.skipped == ["ZZ9"]
        assert not result.empty

    async def test_empty_match_is_reported(self, ledger):
        result = await ledger.mark_unavailable(["nope"])
        assert result.empty
        assert result.matched == []

    async def test_blank_and_duplicate_codes_collapse(self, ledger):
        result = await ledger.mark_unavailable([" A1 ", "A1", "", None])
        assert result.matched == ["A1"]


class TestMarkAvailable:
    async def test_round_trip(self, ledger):
        await ledger.mark_unavailable(["A1", "A2"])
        await ledger.mark_available(["A1"])
        assert await ledger.is_available("A1")
        assert not await ledger.is_available("A2")

    async def test_unknown_code_reads_unavailable(self, ledger):
        assert not await ledger.is_available("missing")


class TestStaging:
    async def test_stage_requires_available_unit(self, ledger):
        await ledger.mark_unavailable(["A1"])
        with pytest.raises(ValidationError, match="A1"):
            await ledger.stage_unavailable(WriteBatch(), ["A1"], require_available=True)

    async def test_staged_writes_wait_for_commit(self, ledger, store):
        batch = WriteBatch()
        await ledger.stage_unavailable(batch, ["A1"], require_available=True)
        assert await ledger.is_available("A1")
        await store.commit(batch)
        assert not await ledger.is_available("A1")

    async def test_guard_fails_when_unit_taken_in_between(self, ledger, store):
        batch = WriteBatch()
        await ledger.stage_unavailable(batch, ["A1"], require_available=True)
        await ledger.mark_unavailable(["A1"])
        with pytest.raises(WriteConflict) as exc:
            await store.commit(batch)
        assert exc.value.collection == ASSET_UNITS
        assert exc.value.key == "A1"

    async def test_unit_of_other_equipment_rejected(self, ledger):
        with pytest.raises(ValidationError, match="does not belong"):
            await ledger.stage_unavailable(WriteBatch(), ["A1"], require_available=True,
                                           owners={"A1": "equipment-cable"})

    async def test_loan_is_stamped_and_cleared(self, ledger, store):
        batch = WriteBatch()
        await ledger.stage_unavailable(batch, ["A1"], borrow_id="borrow-1", owners={"A1": "equipment-camera"})
        await store.commit(batch)
        assert (await store.get(ASSET_UNITS, "A1"))["borrow_id"] == "borrow-1"
        await ledger.mark_available(["A1"])
        assert (await store.get(ASSET_UNITS, "A1"))["borrow_id"] is None
