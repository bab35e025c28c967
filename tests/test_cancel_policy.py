"""
Tests for the cancel policy: what a cancellation does to units and stock.
"""

import pytest

from conftest import ADMIN_EMAIL, CABLE_ID, STAFF, RecordingSender, make_request, seed_inventory
from equiplend.db.memory import MemoryStore
from equiplend.db.store import ADMIN_LOGS, ASSET_UNITS, EQUIPMENT
from equiplend.models.enum import BorrowStatus, CancelPolicy
from equiplend.services.registry import build_services


async def _services(policy):
    store = MemoryStore()
    await seed_inventory(store)
    return build_services(store, sender=RecordingSender(), cancel_policy=policy,
                          admin_email=ADMIN_EMAIL, auto_dispatch=False)


class TestRetain:
    async def test_units_and_stock_stay_out(self):
        services = await _services("retain")
        record = await services.borrowings.create(make_request(cables=3))
        cancelled = await services.borrowings.cancel(record.borrow_id, STAFF, "no longer needed")
        assert cancelled.status == BorrowStatus.CANCELLED
        assert not await services.ledger.is_available("A1")
        assert not await services.ledger.is_available("A2")
        assert (await services.store.get(EQUIPMENT, CABLE_ID))["quantity"] == 7

    async def test_is_the_default(self):
        services = await _services("something-else")
        assert services.borrowings.cancel_policy == CancelPolicy.RETAIN


class TestRelease:
    async def test_units_and_stock_come_back(self):
        services = await _services("release")
        record = await services.borrowings.create(make_request(cables=3))
        await services.borrowings.cancel(record.borrow_id, STAFF, "room closed")
        assert await services.ledger.is_available("A1")
        assert (await services.store.get(ASSET_UNITS, "A1"))["borrow_id"] is None
        assert await services.ledger.is_available("A2")
        assert (await services.store.get(EQUIPMENT, CABLE_ID))["quantity"] == 10

    async def test_release_from_scheduled(self):
        services = await _services("release")
        record = await services.borrowings.create(make_request(hand_over=False))
        await services.borrowings.cancel(record.borrow_id, STAFF)
        assert await services.ledger.is_available("A1")

    @pytest.mark.parametrize("policy", ["retain", "release"])
    async def test_cancel_is_logged(self, policy):
        services = await _services(policy)
        record = await services.borrowings.create(make_request())
        await services.borrowings.cancel(record.borrow_id, STAFF, "duplicate request")
        logs = await services.store.find(ADMIN_LOGS)
        assert len(logs) == 1
        assert logs[0]["action"] == "cancel"
        assert logs[0]["type"] == "borrow"
        assert logs[0]["admin_email"] == STAFF.email
        assert "duplicate request" in logs[0]["details"]
