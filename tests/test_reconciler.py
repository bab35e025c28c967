"""
Tests for services.reconciler: merging return claims into stored items.
"""

import pytest

from equiplend.core.exceptions import ValidationError
from equiplend.models.borrowing import BorrowItem, CodeCondition, ItemReturnClaim
from equiplend.models.enum import AssetCondition, ConsumptionStatus, EquipmentCategory
from equiplend.services.reconciler import reconcile


def _asset(**overrides) -> BorrowItem:
    defaults = dict(
        equipment_id="eq-cam", equipment_name="Camera", equipment_category=EquipmentCategory.ASSET,
        quantity_borrowed=2, serial_codes=["A1", "A2"],
    )
    defaults.update(overrides)
    return BorrowItem(**defaults)


def _consumable(**overrides) -> BorrowItem:
    defaults = dict(
        equipment_id="eq-cable", equipment_name="HDMI Cable", equipment_category=EquipmentCategory.CONSUMABLE,
        quantity_borrowed=5,
    )
    defaults.update(overrides)
    return BorrowItem(**defaults)


class TestMerge:
    def test_present_fields_overwrite(self):
        claim = ItemReturnClaim(
            equipment_id="eq-cam", equipment_name="Camera", return_condition=AssetCondition.NORMAL,
            code_conditions=[CodeCondition(code="A2", condition=AssetCondition.DAMAGED, notes="cracked lens")],
        )
        result = reconcile([_asset()], [claim])
        item = result.items[0]
        assert item.return_condition == AssetCondition.NORMAL
        assert item.condition_of("A1") == AssetCondition.NORMAL
        assert item.condition_of("A2") == AssetCondition.DAMAGED
        assert result.restock == {}

    def test_absent_fields_keep_stored_values(self):
        stored = _asset(return_condition=AssetCondition.DAMAGED, return_notes="scratched")
        claim = ItemReturnClaim(equipment_id="eq-cam", equipment_name="Camera", quantity_returned=2)
        item = reconcile([stored], [claim]).items[0]
        assert item.return_condition == AssetCondition.DAMAGED
        assert item.return_notes == "scratched"
        assert item.quantity_returned == 2

    def test_stored_items_are_not_mutated(self):
        stored = _asset()
        claim = ItemReturnClaim(equipment_id="eq-cam", equipment_name="Camera", return_condition=AssetCondition.LOST)
        reconcile([stored], [claim])
        assert stored.return_condition is None

    def test_unmatched_items_pass_through(self):
        cam, cable = _asset(), _consumable()
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=1)
        result = reconcile([cam, cable], [claim])
        assert result.items[0] == cam
        assert result.items[1].quantity_returned == 1

    def test_claim_matching_nothing_is_ignored(self):
        claim = ItemReturnClaim(equipment_id="eq-cam", equipment_name="Tripod", return_condition=AssetCondition.LOST)
        result = reconcile([_asset()], [claim])
        assert result.items[0].return_condition is None

    def test_name_is_part_of_the_match(self):
        stored = [_asset(), _asset(equipment_name="Camera (spare)", serial_codes=["B1", "B2"])]
        claim = ItemReturnClaim(equipment_id="eq-cam", equipment_name="Camera (spare)",
                                return_condition=AssetCondition.DAMAGED)
        result = reconcile(stored, [claim])
        assert result.items[0].return_condition is None
        assert result.items[1].return_condition == AssetCondition.DAMAGED


class TestValidation:
    def test_over_return_rejected(self):
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=6)
        with pytest.raises(ValidationError, match="exceeds"):
            reconcile([_consumable()], [claim])

    def test_negative_return_rejected(self):
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=-1)
        with pytest.raises(ValidationError):
            reconcile([_consumable()], [claim])

    def test_condition_for_code_not_borrowed(self):
        claim = ItemReturnClaim(
            equipment_id="eq-cam", equipment_name="Camera",
            code_conditions=[CodeCondition(code="A9", condition=AssetCondition.NORMAL)],
        )
        with pytest.raises(ValidationError, match="A9"):
            reconcile([_asset()], [claim])

    def test_code_conditions_on_consumable(self):
        claim = ItemReturnClaim(
            equipment_id="eq-cable", equipment_name="HDMI Cable",
            code_conditions=[CodeCondition(code="X", condition=AssetCondition.NORMAL)],
        )
        with pytest.raises(ValidationError, match="Consumable"):
            reconcile([_consumable()], [claim])

    def test_one_bad_claim_fails_the_whole_merge(self):
        good = ItemReturnClaim(equipment_id="eq-cam", equipment_name="Camera", return_condition=AssetCondition.NORMAL)
        bad = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=99)
        with pytest.raises(ValidationError):
            reconcile([_asset(), _consumable()], [good, bad])


class TestRestock:
    def test_returned_consumables_are_credited(self):
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=3,
                                consumption_status=ConsumptionStatus.PARTIALLY_USED)
        result = reconcile([_consumable()], [claim])
        assert result.restock == {"eq-cable": 3}
        assert result.items[0].quantity_restocked == 3
        assert result.items[0].consumption_status == ConsumptionStatus.PARTIALLY_USED

    def test_resubmission_credits_only_the_difference(self):
        stored = _consumable(quantity_returned=3, quantity_restocked=3)
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=4)
        result = reconcile([stored], [claim])
        assert result.restock == {"eq-cable": 1}
        assert result.items[0].quantity_restocked == 4

    def test_lowered_claim_never_debits(self):
        stored = _consumable(quantity_returned=3, quantity_restocked=3)
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=1)
        result = reconcile([stored], [claim])
        assert result.restock == {}
        assert result.items[0].quantity_restocked == 3

    def test_amounts_summed_per_equipment(self):
        stored = [_consumable(), _consumable(equipment_name="HDMI Cable (long)")]
        claims = [
            ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=2),
            ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable (long)", quantity_returned=1),
        ]
        assert reconcile(stored, claims).restock == {"eq-cable": 3}

    def test_zero_returned_adds_nothing(self):
        claim = ItemReturnClaim(equipment_id="eq-cable", equipment_name="HDMI Cable", quantity_returned=0,
                                consumption_status=ConsumptionStatus.USED_UP)
        assert reconcile([_consumable()], [claim]).restock == {}
