import os

# configuration is read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["STORE_BACKEND"] = "memory"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["NOTIFICATION_AUTO_DISPATCH"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("ADMIN_EMAIL", "lab-admin@example.edu")
os.environ.setdefault("LOG_FILE_PATH", os.path.join(os.path.dirname(__file__), ".logs", "test.log"))

from datetime import date

import pytest

from equiplend.db.memory import MemoryStore
from equiplend.db.store import ASSET_UNITS, EQUIPMENT
from equiplend.models.borrowing import BorrowItemRequest, BorrowTransaction
from equiplend.models.enum import BorrowType, CancelPolicy, EquipmentCategory
from equiplend.models.identity import Actor, Requester, UserRole
from equiplend.models.notification import DispatchResult
from equiplend.services.registry import build_services

ADMIN_EMAIL = "lab-admin@example.edu"
CAMERA_ID = "equipment-camera"
CABLE_ID = "equipment-cable"

STAFF = Actor(user_id="staff-1", email="staff@example.edu", name="Sari Staff", role=UserRole.STAFF)
REQUESTER = Requester(user_id="u-100", email="budi@example.edu", name="Budi", id_number="6401")


class RecordingSender:
    """Collects sent notifications; optionally fails every send."""

    def __init__(self, fail_with=None):
        self.sent = []
        self.fail_with = fail_with

    async def send(self, kind, recipient, template_data):
        if self.fail_with is not None: raise self.fail_with
        self.sent.append((kind, recipient, template_data))
        return DispatchResult.ok()


async def seed_inventory(store, codes=("A1", "A2", "A3"), cable_stock=10):
    await store.put(EQUIPMENT, CAMERA_ID, {
        "equipment_id": CAMERA_ID, "name": "Camera", "category": "asset",
        "quantity": len(codes), "available": True,
    })
    for code in codes:
        await store.put(ASSET_UNITS, code, {
            "serial_code": code, "equipment_id": CAMERA_ID, "available": True, "condition": "normal",
        })
    await store.put(EQUIPMENT, CABLE_ID, {
        "equipment_id": CABLE_ID, "name": "HDMI Cable", "category": "consumable",
        "quantity": cable_stock, "available": cable_stock > 0,
    })


def make_request(codes=("A1", "A2"), cables=0, hand_over=True, **overrides) -> BorrowTransaction.Create:
    items = []
    if codes:
        items.append(BorrowItemRequest(
            equipment_id=CAMERA_ID, equipment_name="Camera",
            equipment_category=EquipmentCategory.ASSET, quantity=len(codes), serial_codes=list(codes),
        ))
    if cables:
        items.append(BorrowItemRequest(
            equipment_id=CABLE_ID, equipment_name="HDMI Cable",
            equipment_category=EquipmentCategory.CONSUMABLE, quantity=cables,
        ))
    fields = dict(
        requester=REQUESTER,
        borrow_type=BorrowType.DURING_CLASS,
        items=items,
        borrow_date=date(2025, 3, 3),
        borrow_time="08:00",
        expected_return_date=date(2025, 3, 3),
        expected_return_time="12:00",
        condition_before_borrow="good",
        hand_over=hand_over,
    )
    fields.update(overrides)
    return BorrowTransaction.Create(**fields)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def cancel_policy():
    return CancelPolicy.RETAIN


@pytest.fixture
async def services(store, sender, cancel_policy):
    await seed_inventory(store)
    return build_services(store, sender=sender, cancel_policy=cancel_policy.value,
                          admin_email=ADMIN_EMAIL, auto_dispatch=False)


@pytest.fixture
def borrowings(services):
    return services.borrowings


@pytest.fixture
def ledger(services):
    return services.ledger
